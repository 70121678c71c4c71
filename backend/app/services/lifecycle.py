"""Process-local lifecycle trackers shared by the heartbeat handler and the reaper.

Both live for the lifetime of the process and are never persisted; after a
restart they are rebuilt from observation. Each guards its own state with a
short lock that is never held across an ``await``, so independent server ids
never wait on one another beyond a single dict operation. Neither touches the
allocation lock.
"""

import threading
import time


class HeartbeatTracker:
    """server_id -> last time (monotonic seconds) the instance was seen alive."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last_seen: dict[str, float] = {}

    def touch(self, server_id: str, now: float | None = None) -> None:
        with self._lock:
            self._last_seen[server_id] = time.monotonic() if now is None else now

    def seed(self, server_id: str, now: float | None = None) -> float:
        """Record ``now`` only if the instance has never been seen; return last seen."""
        with self._lock:
            return self._last_seen.setdefault(
                server_id, time.monotonic() if now is None else now
            )

    def last_seen(self, server_id: str) -> float | None:
        with self._lock:
            return self._last_seen.get(server_id)

    def forget(self, server_id: str) -> None:
        with self._lock:
            self._last_seen.pop(server_id, None)

    def clear(self) -> None:
        with self._lock:
            self._last_seen.clear()

    def __contains__(self, server_id: object) -> bool:
        with self._lock:
            return server_id in self._last_seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_seen)


class PendingTerminationSet:
    """Server ids to be told ``Terminate`` on their next heartbeat."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: set[str] = set()

    def flag(self, server_id: str) -> bool:
        """Flag ``server_id``; return False if it was already flagged."""
        with self._lock:
            if server_id in self._pending:
                return False
            self._pending.add(server_id)
            return True

    def consume(self, server_id: str) -> bool:
        """Remove the flag; return True if it was set."""
        with self._lock:
            if server_id in self._pending:
                self._pending.discard(server_id)
                return True
            return False

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()

    def __contains__(self, server_id: object) -> bool:
        with self._lock:
            return server_id in self._pending

    def __len__(self) -> int:
        with self._lock:
            return len(self._pending)


# Singletons, created at import (process start)
heartbeat_tracker = HeartbeatTracker()
pending_terminations = PendingTerminationSet()
