"""Tests for device leases, the device pool, cancellation and the HA barrier."""
import asyncio

import pytest

from firewall_reconciler.orchestrator import CancellationToken, DevicePool, HABarrier, LeaseManager


class TestLeaseManager:
    """Tests for single-holder device leases."""

    @pytest.mark.asyncio
    async def test_holder_tracked(self):
        """Test the current holder is visible while the lease is held."""
        leases = LeaseManager()
        async with leases.hold("fw-01", "att-1"):
            assert leases.is_held("fw-01")
            assert leases.holder("fw-01") == "att-1"
        assert not leases.is_held("fw-01")

    @pytest.mark.asyncio
    async def test_second_holder_waits(self):
        """Test a second holder waits for the first to release."""
        leases = LeaseManager()
        order = []

        async def hold(holder, delay):
            async with leases.hold("fw-01", holder):
                order.append(f"{holder}-in")
                await asyncio.sleep(delay)
                order.append(f"{holder}-out")

        await asyncio.gather(hold("a", 0.02), hold("b", 0))
        assert order == ["a-in", "a-out", "b-in", "b-out"]

    @pytest.mark.asyncio
    async def test_devices_independent(self):
        """Test leases on different devices do not block each other."""
        leases = LeaseManager()
        async with leases.hold("fw-01", "att-1"):
            async with leases.hold("fw-02", "att-2"):
                assert leases.holder("fw-02") == "att-2"


class TestDevicePool:
    """Tests for the bounded device pool."""

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        """Test no more than max_concurrency slots are in use."""
        pool = DevicePool(max_concurrency=2)

        async def work():
            async with pool.slot():
                await asyncio.sleep(0.01)

        await asyncio.gather(*(work() for _ in range(6)))
        assert pool.peak == 2
        assert pool.in_flight == 0


class TestCancellationToken:
    """Tests for cancellation tokens."""

    @pytest.mark.asyncio
    async def test_cancel(self):
        """Test cancel() sets the flag, reason and wakes waiters."""
        token = CancellationToken()
        assert not token.cancelled

        waiter = asyncio.create_task(token.wait())
        token.cancel("pipeline aborted")
        await asyncio.wait_for(waiter, 1)

        assert token.cancelled
        assert token.reason == "pipeline aborted"


class TestHABarrier:
    """Tests for the HA ordering barrier."""

    @pytest.mark.asyncio
    async def test_released_on_passive_commit(self):
        """Test the active side proceeds once the passive commits."""
        barrier = HABarrier(active_id="fw-a", passive_id="fw-b")
        waiter = asyncio.create_task(barrier.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        barrier.passive_committed()
        assert await asyncio.wait_for(waiter, 1) is True

    @pytest.mark.asyncio
    async def test_passive_failure_releases_negative(self):
        """Test a passive that ends without committing releases with False."""
        barrier = HABarrier(active_id="fw-a", passive_id="fw-b")
        barrier.passive_finished(committed=False)
        assert await barrier.wait() is False

    @pytest.mark.asyncio
    async def test_first_signal_wins(self):
        """Test a later finish does not override an earlier commit."""
        barrier = HABarrier(active_id="fw-a", passive_id="fw-b")
        barrier.passive_committed()
        barrier.passive_finished(committed=False)
        assert await barrier.wait() is True
