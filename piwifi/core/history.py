"""
Bounded log of WiFi connection attempts.

The log holds the most recent attempts in call order and evicts the oldest
once full. It is shared between request handlers and the connectivity
monitor, so every method takes the lock and hands out copies.
"""

import logging
import threading
from collections import Counter, deque
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone
from typing import Any, Deque, Dict, Iterable, List, Optional, Tuple

from ..const import DEFAULT_FAVORITES_LIMIT, HISTORY_CAPACITY

logger = logging.getLogger(__name__)


@dataclass
class ConnectionEntry:
    """One connection attempt or observed session."""

    ssid: str
    timestamp: datetime
    success: bool
    duration_seconds: Optional[int] = None
    disconnection_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionEntry":
        return cls(
            ssid=data["ssid"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            success=bool(data["success"]),
            duration_seconds=data.get("duration_seconds"),
            disconnection_reason=data.get("disconnection_reason"),
        )


class ConnectionHistory:
    """Append-only connection log with FIFO eviction."""

    def __init__(self, capacity: int = HISTORY_CAPACITY):
        self.capacity = capacity
        self._entries: Deque[ConnectionEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _append(self, entry: ConnectionEntry) -> ConnectionEntry:
        with self._lock:
            self._entries.append(entry)
        return replace(entry)

    def record_success(self, ssid: str) -> ConnectionEntry:
        return self._append(ConnectionEntry(ssid=ssid, timestamp=datetime.now(timezone.utc), success=True))

    def record_failure(self, ssid: str, reason: Optional[str] = None) -> ConnectionEntry:
        return self._append(
            ConnectionEntry(
                ssid=ssid,
                timestamp=datetime.now(timezone.utc),
                success=False,
                disconnection_reason=reason,
            )
        )

    def record_disconnection(self, ssid: str, duration_seconds: int) -> bool:
        """Back-fill the session length on the latest successful entry for ``ssid``.

        Returns False (and changes nothing) if there is no such entry.
        """
        with self._lock:
            for entry in reversed(self._entries):
                if entry.ssid == ssid and entry.success:
                    entry.duration_seconds = duration_seconds
                    return True
        logger.debug(f"No successful connection to '{ssid}' to attach a duration to")
        return False

    def all(self) -> List[ConnectionEntry]:
        """All entries, newest first."""
        with self._lock:
            return [replace(entry) for entry in reversed(self._entries)]

    def by_ssid(self, ssid: str) -> List[ConnectionEntry]:
        with self._lock:
            return [replace(entry) for entry in reversed(self._entries) if entry.ssid == ssid]

    def favorites(self, limit: int = DEFAULT_FAVORITES_LIMIT) -> List[Tuple[str, int]]:
        """Most frequently joined SSIDs as ``(ssid, successes)``.

        Ordered by success count descending, ties broken by SSID ascending.
        """
        if limit <= 0:
            return []
        with self._lock:
            counts = Counter(entry.ssid for entry in self._entries if entry.success)
        return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:limit]

    def success_rate(self, ssid: str) -> Optional[float]:
        """Percentage of successful attempts, or None if ``ssid`` was never tried."""
        with self._lock:
            attempts = [entry.success for entry in self._entries if entry.ssid == ssid]
        if not attempts:
            return None
        return 100.0 * sum(attempts) / len(attempts)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.info("Connection history cleared")

    def restore(self, entries: Iterable[ConnectionEntry]) -> None:
        """Replace the log with ``entries`` given newest first, as from all()."""
        ordered = list(entries)
        ordered.reverse()
        with self._lock:
            self._entries.clear()
            self._entries.extend(replace(entry) for entry in ordered)
