"""
Report Cache - short-lived in-memory store for detailed classification reports.

- Report ids are 128-bit random hex strings (secrets.token_hex(16)).
- Entries expire TTL after creation (default 30 min). get() treats an expired
  entry as missing even before the periodic sweep removes it.
- No persistence: a restart drops every pending report.
- put/get/sweep hold a lock so thread-pool callers and the scheduler cannot race.
"""
import logging
import os
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from models import DetailedReport

logger = logging.getLogger(__name__)

REPORT_TTL_MINUTES = int(os.getenv("REPORT_TTL_MINUTES", "30"))
REPORT_SWEEP_MINUTES = int(os.getenv("REPORT_SWEEP_MINUTES", "5"))

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CachedReport:
    report_id: str
    detail: DetailedReport
    created_at: datetime


class ReportCache:
    def __init__(self, ttl: timedelta = timedelta(minutes=REPORT_TTL_MINUTES), clock: Clock = utc_now):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[str, CachedReport] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_expired(self, entry: CachedReport, now: datetime) -> bool:
        return now - entry.created_at > self.ttl

    def put(self, detail: DetailedReport) -> str:
        """Store detail under a fresh unguessable id and return the id."""
        with self._lock:
            report_id = secrets.token_hex(16)
            while report_id in self._entries:
                report_id = secrets.token_hex(16)
            self._entries[report_id] = CachedReport(
                report_id=report_id,
                detail=detail,
                created_at=self._clock(),
            )
        return report_id

    def get(self, report_id: str) -> Optional[DetailedReport]:
        """Return the cached detail, or None if the id is unknown or expired."""
        with self._lock:
            entry = self._entries.get(report_id)
            if entry is None or self._is_expired(entry, self._clock()):
                return None
            return entry.detail

    def sweep(self, now: Optional[datetime] = None) -> int:
        """Remove every expired entry. Returns how many were removed."""
        now = now or self._clock()
        with self._lock:
            expired = [rid for rid, entry in self._entries.items() if self._is_expired(entry, now)]
            for rid in expired:
                del self._entries[rid]
        if expired:
            logger.info(f"Report cache sweep removed {len(expired)} expired reports")
        return len(expired)
