import threading
import time
from collections import OrderedDict


class ProcessedIds:
    """
    Recency window of message ids already relayed by this process.
    Capped by size (oldest evicted first) and optionally by age.
    """

    def __init__(self, max_ids: int = 10000, ttl_sec: float = 0, clock=time.monotonic):
        self.max_ids = max(1, int(max_ids))
        self.ttl_sec = float(ttl_sec or 0)
        self._clock = clock
        self._seen = OrderedDict()
        self._lock = threading.Lock()

    def _expire(self, now: float) -> None:
        if self.ttl_sec <= 0:
            return
        cutoff = now - self.ttl_sec
        while self._seen:
            _, seen_at = next(iter(self._seen.items()))
            if seen_at > cutoff:
                break
            self._seen.popitem(last=False)

    def check_and_add(self, message_id: str) -> bool:
        """True the first time an id is seen inside the window, False afterwards."""
        with self._lock:
            now = self._clock()
            self._expire(now)
            if message_id in self._seen:
                return False
            self._seen[message_id] = now
            while len(self._seen) > self.max_ids:
                self._seen.popitem(last=False)
            return True

    def discard(self, message_id: str) -> None:
        with self._lock:
            self._seen.pop(message_id, None)

    def __contains__(self, message_id) -> bool:
        with self._lock:
            self._expire(self._clock())
            return message_id in self._seen

    def __len__(self) -> int:
        with self._lock:
            self._expire(self._clock())
            return len(self._seen)
