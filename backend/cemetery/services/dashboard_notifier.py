"""
Dashboard Notifier — Tracks a version number that moves on every invalidation.
Staff dashboards compare versions (HTTP or WebSocket) and refetch when it changes.
"""
import logging
import threading
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


class DashboardNotifier:
    def __init__(self):
        self._lock = threading.Lock()
        self._version = 0
        self._updated_at: Optional[datetime] = None
        self._reason: Optional[str] = None

    def notify(self, reason: str = "update") -> int:
        with self._lock:
            self._version += 1
            self._updated_at = datetime.utcnow()
            self._reason = reason
            version = self._version
        logger.debug("Dashboard invalidated (%s), version %d", reason, version)
        return version

    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "version": self._version,
                "updated_at": self._updated_at,
                "reason": self._reason,
            }


dashboard_notifier = DashboardNotifier()
