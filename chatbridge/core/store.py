import threading
from dataclasses import dataclass, field
from typing import Iterable, List, Set

from chatbridge.core.models import MessageRecord


@dataclass
class WindowSnapshot:
    fresh: List[MessageRecord] = field(default_factory=list)
    expired_ids: Set[str] = field(default_factory=set)


class RecordStore:
    """In-memory window of messages posted under the relay's webhook.

    All methods are synchronous and hold the lock only for list operations,
    so the store can be shared by the send path, the gateway observer and
    the sweep.
    """

    def __init__(self):
        self._records: List[MessageRecord] = []
        self._ids: Set[str] = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, message_id: object) -> bool:
        with self._lock:
            return message_id in self._ids

    def insert(self, record: MessageRecord) -> bool:
        if not record.is_from_managed_sender or not record.raw_content:
            return False
        with self._lock:
            if record.id in self._ids:
                return False
            self._records.append(record)
            self._ids.add(record.id)
            return True

    def records(self) -> List[MessageRecord]:
        with self._lock:
            return list(self._records)

    def snapshot_window(self, max_age_ms: float, now: float) -> WindowSnapshot:
        snapshot = WindowSnapshot()
        with self._lock:
            for record in self._records:
                if record.age_ms(now) < max_age_ms:
                    snapshot.fresh.append(record)
                else:
                    snapshot.expired_ids.add(record.id)
        return snapshot

    def remove_many(self, ids: Iterable[str]) -> int:
        doomed = set(ids)
        if not doomed:
            return 0
        with self._lock:
            before = len(self._records)
            self._records = [r for r in self._records if r.id not in doomed]
            self._ids -= doomed
            return before - len(self._records)
