"""
core/status.py -- In-process maintenance and announcement state.

Clients poll GET /maintenance and GET /announcement (both public) to show
banners. State lives in memory for the process lifetime and is lost on
restart.

A scheduled maintenance becomes active once `delay_seconds` have elapsed. The
transition is computed on read from the stored start time, so no timer thread
is needed.
"""

import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

STATUS_NORMAL = "normal"
STATUS_SCHEDULED = "scheduled"
STATUS_MAINTENANCE = "maintenance"

DEFAULT_MAINTENANCE_MESSAGE = (
    "The server will restart to deploy an update in one minute. "
    "Please stop vendor entry and save any work in progress."
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MaintenanceSnapshot:
    status: str
    message: str
    start_at: Optional[datetime]
    delay_seconds: int
    begins_at: Optional[datetime]
    last_ended_at: Optional[datetime]

    def to_dict(self) -> dict:
        return asdict(self)


class MaintenanceState:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._scheduled = False
        self._message = ""
        self._start_at: Optional[datetime] = None
        self._delay = 0
        self._last_ended_at: Optional[datetime] = None

    def schedule(
        self,
        delay_seconds: int = 60,
        message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> MaintenanceSnapshot:
        if delay_seconds < 0:
            raise ValueError("delay_seconds must not be negative")
        now = now or _now()
        with self._lock:
            self._scheduled = True
            self._message = message or DEFAULT_MAINTENANCE_MESSAGE
            self._start_at = now
            self._delay = delay_seconds
            self._last_ended_at = None
        return self.snapshot(now)

    def stop(self, now: Optional[datetime] = None) -> MaintenanceSnapshot:
        now = now or _now()
        with self._lock:
            self._scheduled = False
            self._message = ""
            self._start_at = None
            self._delay = 0
            self._last_ended_at = now
        return self.snapshot(now)

    def snapshot(self, now: Optional[datetime] = None) -> MaintenanceSnapshot:
        now = now or _now()
        with self._lock:
            if not self._scheduled:
                status, begins_at = STATUS_NORMAL, None
            else:
                begins_at = self._start_at + timedelta(seconds=self._delay)
                status = STATUS_MAINTENANCE if now >= begins_at else STATUS_SCHEDULED
            return MaintenanceSnapshot(
                status=status,
                message=self._message,
                start_at=self._start_at,
                delay_seconds=self._delay,
                begins_at=begins_at,
                last_ended_at=self._last_ended_at,
            )

    def blocks_writes(self, now: Optional[datetime] = None) -> bool:
        return self.snapshot(now).status == STATUS_MAINTENANCE


@dataclass(frozen=True)
class Announcement:
    message: str
    created_at: Optional[datetime]

    def to_dict(self) -> dict:
        return asdict(self)


class AnnouncementBoard:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._current = Announcement(message="", created_at=None)

    def publish(self, message: str, now: Optional[datetime] = None) -> Announcement:
        with self._lock:
            self._current = Announcement(message=message, created_at=now or _now())
            return self._current

    def clear(self) -> Announcement:
        with self._lock:
            self._current = Announcement(message="", created_at=None)
            return self._current

    def snapshot(self) -> Announcement:
        with self._lock:
            return self._current
