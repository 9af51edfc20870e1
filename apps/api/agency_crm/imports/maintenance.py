from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger("app.crm.maintenance")


class MaintenanceInProgressError(RuntimeError):
    def __init__(self, operation: str, active_operation: str | None) -> None:
        self.operation = operation
        self.active_operation = active_operation
        super().__init__(f"Cannot start {operation}: {active_operation or 'another operation'} is in progress")


class MaintenanceLock:
    """Process-wide single-flight guard for import, backup and restore."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active_operation: str | None = None

    @property
    def active_operation(self) -> str | None:
        return self._active_operation

    def is_held(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self, operation: str) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            logger.warning("crm.maintenance.busy", extra={"status": self._active_operation})
            raise MaintenanceInProgressError(operation, self._active_operation)
        self._active_operation = operation
        try:
            yield
        finally:
            self._active_operation = None
            self._lock.release()


maintenance_lock = MaintenanceLock()
