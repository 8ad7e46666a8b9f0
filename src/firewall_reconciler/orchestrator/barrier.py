"""HA cross-attempt barrier.

For an HA pair targeted by one deployment, the active member's attempt may
not leave staged until the passive member's attempt has committed.
"""
import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class HABarrier:
    """Ordering gate between the two attempts of an HA pair."""

    def __init__(self, active_id: str, passive_id: str):
        self.active_id = active_id
        self.passive_id = passive_id
        self._released = asyncio.Event()
        self._passive_committed: Optional[bool] = None

    def passive_committed(self) -> None:
        """Called when the passive attempt enters committed."""
        if self._passive_committed is None:
            logger.info(f"HA barrier {self.passive_id} -> {self.active_id}: passive committed")
            self._passive_committed = True
            self._released.set()

    def passive_finished(self, committed: bool) -> None:
        """Called when the passive attempt ends, however it ended."""
        if self._passive_committed is None:
            if not committed:
                logger.warning(
                    f"HA barrier {self.passive_id} -> {self.active_id}: passive ended without committing"
                )
            self._passive_committed = committed
            self._released.set()

    async def wait(self) -> bool:
        """Wait for the passive member. True if it committed."""
        await self._released.wait()
        return bool(self._passive_committed)
