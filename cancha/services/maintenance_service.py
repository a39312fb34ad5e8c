"""
Maintenance worker: periodically removes expired admin sessions and
login attempts past their retention window.
"""

import asyncio
import logging
from typing import Dict, Optional

from cancha.services import rate_limiting_service, session_service
from cancha.utils.constants import MAINTENANCE_POLL_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class MaintenanceService:
    """Background service that prunes expired auth data."""

    def __init__(self, poll_interval_seconds: float = MAINTENANCE_POLL_INTERVAL_SECONDS):
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._poll_interval_seconds = poll_interval_seconds

    def start(self) -> None:
        """Start the background maintenance worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Maintenance worker started")

    def stop(self) -> None:
        """Stop the background maintenance worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Maintenance worker stopped")

    async def _poll_loop(self) -> None:
        """Run a cleanup pass, then wait for the interval. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in maintenance worker: {e}", exc_info=True)

            try:
                await asyncio.wait_for(
                    self._stop_event.wait(), timeout=self._poll_interval_seconds
                )
                # stop_event was set
                break
            except asyncio.TimeoutError:
                pass

    async def run_once(self) -> Dict[str, int]:
        """
        Run one cleanup pass.

        Returns:
            Counts of removed sessions and login attempts
        """
        expired_sessions = await session_service.cleanup_expired_sessions()
        old_attempts = await rate_limiting_service.cleanup_old_attempts()
        if expired_sessions or old_attempts:
            logger.info(
                f"Maintenance removed {expired_sessions} expired session(s) "
                f"and {old_attempts} old login attempt(s)"
            )
        return {"expired_sessions": expired_sessions, "old_login_attempts": old_attempts}


# Global singleton
_maintenance_service = MaintenanceService()


def get_maintenance_service() -> MaintenanceService:
    """Get the global maintenance service instance."""
    return _maintenance_service
