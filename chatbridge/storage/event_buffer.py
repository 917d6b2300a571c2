import time
from collections import Counter, deque
from typing import Deque, Dict, List


class EventBuffer:
    """Recent relay decisions for operators, newest last."""

    def __init__(self, maxlen: int = 200):
        self.buffer: Deque[Dict] = deque(maxlen=maxlen)
        self.counts: Counter = Counter()

    def add(self, event_type: str, **detail) -> None:
        self.counts[event_type] += 1
        self.buffer.append({"ts": time.time(), "type": event_type, **detail})

    def recent(self, limit: int = 50) -> List[Dict]:
        if limit <= 0:
            return []
        return list(self.buffer)[-limit:]
