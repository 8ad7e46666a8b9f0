"""Tests for engine events and the event bus."""
import pytest

from firewall_reconciler.events import (
    DeploymentCompleted,
    DeploymentFailed,
    DeploymentLocked,
    DriftDetected,
    EventBus,
    GuardrailBlocked,
)


class TestEvents:
    """Tests for event payloads."""

    def test_alerts(self):
        """Test which events count as alerts."""
        assert not DeploymentCompleted("fw-01", attempt_id="a", diff_id="d").is_alert
        assert not GuardrailBlocked("fw-01", attempt_id="a", diff_id="d").is_alert
        assert DeploymentFailed("fw-01", attempt_id="a", diff_id="d", outcome="failed").is_alert
        assert DeploymentLocked("fw-01", attempt_id="a").is_alert
        assert DriftDetected("fw-01", report_id="r", severity="block").is_alert
        assert not DriftDetected("fw-01", report_id="r", severity="warn").is_alert

    def test_to_dict(self):
        """Test serialized events carry their type and timestamp."""
        data = DeploymentLocked("fw-01", attempt_id="att-1", reason="rollback failed").to_dict()

        assert data["event_type"] == "DeploymentLocked"
        assert data["device_id"] == "fw-01"
        assert data["page_operator"] is True
        assert data["occurred_at"]


class TestEventBus:
    """Tests for EventBus delivery."""

    @pytest.mark.asyncio
    async def test_sync_and_async_subscribers(self):
        """Test both plain and coroutine handlers receive events."""
        bus = EventBus()
        seen = []

        async def handler(event):
            seen.append(("async", event.device_id))

        bus.subscribe(lambda event: seen.append(("sync", event.device_id)))
        bus.subscribe(handler)
        await bus.publish(DeploymentCompleted("fw-01", attempt_id="a", diff_id="d"))

        assert seen == [("sync", "fw-01"), ("async", "fw-01")]

    @pytest.mark.asyncio
    async def test_alerts_only(self):
        """Test alert subscribers only see alerts."""
        bus = EventBus()
        alerts = []
        bus.subscribe(alerts.append, alerts_only=True)

        await bus.publish(DeploymentCompleted("fw-01", attempt_id="a", diff_id="d"))
        await bus.publish(DeploymentLocked("fw-01", attempt_id="a"))

        assert [type(e) for e in alerts] == [DeploymentLocked]

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self):
        """Test a raising subscriber does not stop delivery to others."""
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("webhook down")

        bus.subscribe(broken)
        bus.subscribe(seen.append)
        await bus.publish(DeploymentCompleted("fw-01", attempt_id="a", diff_id="d"))

        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        """Test unsubscribed handlers stop receiving events."""
        bus = EventBus()
        seen = []
        bus.subscribe(seen.append)
        bus.unsubscribe(seen.append)

        await bus.publish(DeploymentCompleted("fw-01", attempt_id="a", diff_id="d"))
        assert seen == []
