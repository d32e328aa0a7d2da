from __future__ import annotations

import math
import threading
from typing import Hashable, NamedTuple


class Admission(NamedTuple):
    admitted: bool
    retry_after_s: int = 0


class RateLimiter:
    """
    Per-user cooldown: at most one accepted request per interval.

    The acceptance time is recorded inside try_admit itself, so two
    concurrent requests from one user cannot both get through.
    """

    def __init__(self) -> None:
        self._last_accepted: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def try_admit(self, user_id: Hashable, now_ms: int, interval_ms: int) -> Admission:
        with self._lock:
            last = self._last_accepted.get(user_id)
            elapsed = interval_ms if last is None else now_ms - last
            if elapsed >= interval_ms:
                self._last_accepted[user_id] = now_ms
                return Admission(True)
        return Admission(False, math.ceil((interval_ms - elapsed) / 1000))

    def release(self, user_id: Hashable) -> None:
        """Undo an admission for a request that was not actually served."""
        with self._lock:
            self._last_accepted.pop(user_id, None)

    def clear(self) -> None:
        with self._lock:
            self._last_accepted.clear()

    def __len__(self) -> int:
        return len(self._last_accepted)
