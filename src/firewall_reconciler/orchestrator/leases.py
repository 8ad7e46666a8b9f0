"""Per-device leases, the bounded device pool and cancellation tokens.

A device lease has a single holder: one Deployment Attempt or one Drift
Detector run. The pool bounds in-flight adapter calls across all devices,
so a task waiting on a lease or on the HA barrier holds no slot.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)


class LeaseManager:
    """Single-holder lease per device."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, str] = {}

    def _lock(self, device_id: str) -> asyncio.Lock:
        if device_id not in self._locks:
            self._locks[device_id] = asyncio.Lock()
        return self._locks[device_id]

    @asynccontextmanager
    async def hold(self, device_id: str, holder: str) -> AsyncIterator[None]:
        """
        Hold the device lease for the duration of the block.

        Usage:
            async with leases.hold("fw-edge-01", attempt.attempt_id):
                ...
        """
        lock = self._lock(device_id)
        if lock.locked():
            logger.debug(f"{holder} waiting for lease on {device_id} (held by {self._holders.get(device_id)})")
        async with lock:
            self._holders[device_id] = holder
            logger.debug(f"Lease on {device_id} acquired by {holder}")
            try:
                yield
            finally:
                self._holders.pop(device_id, None)
                logger.debug(f"Lease on {device_id} released by {holder}")

    def holder(self, device_id: str) -> Optional[str]:
        return self._holders.get(device_id)

    def is_held(self, device_id: str) -> bool:
        return device_id in self._holders


class DevicePool:
    """Caps concurrent in-flight device operations."""

    def __init__(self, max_concurrency: int = 8):
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self.in_flight = 0
        self.peak = 0

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        async with self._semaphore:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
            try:
                yield
            finally:
                self.in_flight -= 1


class CancellationToken:
    """Externally triggered cancellation (e.g. pipeline abort)."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason = ""

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
