"""
Background maintenance of the key pool.

Runs KeyManagementService.maintain_pool on a fixed interval for the lifetime
of the application. Each sweep is bounded by a timeout; a failed or timed-out
sweep is logged and the loop keeps going.
"""

import asyncio
from datetime import datetime
from typing import Optional

from fastapi import Request

from qkey_service.models.key_entry import MaintenanceReport
from qkey_service.services.key_service import KeyManagementService
from qkey_service.utils.logger import get_logger

logger = get_logger("kme.maintainer")


class KeyPoolMaintainer:
    """
    Periodic pool sweep driven by an asyncio task.

    Usage:
        maintainer = KeyPoolMaintainer(service, target_active_keys=10,
                                       default_key_size_bytes=8192)
        maintainer.start()
        ...
        await maintainer.stop()
    """

    def __init__(
        self,
        key_service: KeyManagementService,
        target_active_keys: int,
        default_key_size_bytes: int,
        interval_seconds: float = 300.0,
        timeout_seconds: float = 30.0,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")

        self.key_service = key_service
        self.target_active_keys = target_active_keys
        self.default_key_size_bytes = default_key_size_bytes
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds

        self.last_report: Optional[MaintenanceReport] = None
        self.last_run_at: Optional[datetime] = None
        self.last_error: Optional[str] = None
        self.failure_count = 0

        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> MaintenanceReport:
        """
        Run a single bounded sweep.

        Raises:
            asyncio.TimeoutError: If the sweep exceeds the timeout
            KeyServiceError / ValueError: If the sweep parameters are rejected
        """
        report = await asyncio.wait_for(
            self.key_service.maintain_pool(
                self.target_active_keys,
                self.default_key_size_bytes,
            ),
            timeout=self.timeout_seconds,
        )
        self.last_report = report
        self.last_run_at = self.key_service.now()
        self.last_error = None
        return report

    async def _run(self) -> None:
        logger.info(
            "Key pool maintenance started",
            interval_seconds=self.interval_seconds,
            target_active_keys=self.target_active_keys,
        )
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except asyncio.TimeoutError:
                self.failure_count += 1
                self.last_error = f"Sweep exceeded {self.timeout_seconds}s"
                logger.error(
                    "Key pool maintenance timed out",
                    timeout_seconds=self.timeout_seconds,
                )
            except Exception as e:
                self.failure_count += 1
                self.last_error = str(e)
                logger.error(f"Key pool maintenance failed: {e}", exc_info=True)

    def start(self) -> None:
        """Start the background loop (no-op if already running)."""
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run(), name="key-pool-maintenance")

    async def stop(self) -> None:
        """Cancel the background loop and wait for it to finish."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Key pool maintenance stopped")


def get_pool_maintainer(request: Request) -> Optional[KeyPoolMaintainer]:
    """Dependency to get the pool maintainer (None when maintenance is disabled)."""
    return getattr(request.app.state, "pool_maintainer", None)
