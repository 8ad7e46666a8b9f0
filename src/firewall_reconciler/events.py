"""Structured events for external subscribers.

The engine publishes DeploymentCompleted, DeploymentFailed, DeploymentLocked,
GuardrailBlocked and DriftDetected. It does not know how they are delivered:
ticketing, SIEM and paging integrations subscribe to the EventBus.

Alerts (failed or locked deployments, Block-severity drift) are also
delivered to subscribers registered with alerts_only=True.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, ClassVar, Optional, Union

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Event:
    """Base event."""
    device_id: str
    occurred_at: str = field(default_factory=_now, kw_only=True)

    event_type: ClassVar[str] = "event"

    @property
    def is_alert(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"event_type": self.event_type, **asdict(self)}


@dataclass
class DeploymentCompleted(Event):
    attempt_id: str
    diff_id: str
    target_version: Optional[str] = None

    event_type: ClassVar[str] = "DeploymentCompleted"


@dataclass
class DeploymentFailed(Event):
    """Attempt ended without success (aborted, failed or rolled back)."""
    attempt_id: str
    diff_id: str
    outcome: str
    reason: str = ""

    event_type: ClassVar[str] = "DeploymentFailed"

    @property
    def is_alert(self) -> bool:
        return True


@dataclass
class DeploymentLocked(Event):
    """Rollback could not be confirmed; the device needs an operator."""
    attempt_id: str
    reason: str = ""
    page_operator: bool = True

    event_type: ClassVar[str] = "DeploymentLocked"

    @property
    def is_alert(self) -> bool:
        return True


@dataclass
class GuardrailBlocked(Event):
    attempt_id: str
    diff_id: str
    violations: list[dict[str, Any]] = field(default_factory=list)

    event_type: ClassVar[str] = "GuardrailBlocked"


@dataclass
class DriftDetected(Event):
    report_id: str
    severity: str
    total_changes: int = 0

    event_type: ClassVar[str] = "DriftDetected"

    @property
    def is_alert(self) -> bool:
        return self.severity == "block"


Handler = Callable[[Event], Union[None, Awaitable[None]]]


class EventBus:
    """In-process publish/subscribe for engine events."""

    def __init__(self):
        self._subscribers: list[tuple[Handler, bool]] = []

    def subscribe(self, handler: Handler, alerts_only: bool = False) -> None:
        """Register a sync or async handler."""
        self._subscribers.append((handler, alerts_only))

    def unsubscribe(self, handler: Handler) -> None:
        self._subscribers = [(h, a) for h, a in self._subscribers if h != handler]

    async def publish(self, event: Event) -> None:
        """
        Deliver an event to every interested subscriber.

        A failing subscriber is logged and does not stop delivery to the
        others or disturb the pipeline that published the event.
        """
        logger.info(f"Event {event.event_type} for {event.device_id}" + (" [ALERT]" if event.is_alert else ""))
        for handler, alerts_only in list(self._subscribers):
            if alerts_only and not event.is_alert:
                continue
            try:
                result = handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(f"Event subscriber {handler!r} failed on {event.event_type}")
