import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union

from chatbridge.config import DedupConfig
from chatbridge.core.errors import DeleteFailed, DeleteNotFound
from chatbridge.core.matcher import is_duplicate_content, is_duplicate_record, newer_of
from chatbridge.core.models import MessageRecord
from chatbridge.core.ports import MessageDeleter
from chatbridge.core.store import RecordStore
from chatbridge.core.text import extract_chat_text

logger = logging.getLogger(__name__)

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


class ComponentAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['component']}] {msg}", kwargs


@dataclass
class SweepReport:
    scanned: int = 0
    expired: int = 0
    duplicates: int = 0
    deleted: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "expired": self.expired,
            "duplicates": self.duplicates,
            "deleted": list(self.deleted),
            "missing": list(self.missing),
        }


class DuplicateFilter:
    """Suppresses repeat sends and cleans up raced duplicates.

    ``should_suppress`` runs before a send, ``register`` after a confirmed
    one, and ``reconcile`` on a timer. Only ``reconcile`` talks to the
    transport, and it never holds the store lock while doing so.
    """

    def __init__(
        self,
        store: RecordStore,
        deleter: MessageDeleter,
        config: DedupConfig,
        log: Optional[LoggerLike] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.deleter = deleter
        self.config = config
        self.log = ComponentAdapter(log or logger, {"component": "dedupe"})
        self._clock = clock
        self._last_sweep: Optional[float] = None
        self._sweeping = False

    def should_suppress(self, display_name: str, raw_content: str) -> bool:
        if not self.config.enabled:
            return False
        now = self._clock()
        # newest first, the most recent equivalent send decides
        for record in reversed(self.store.records()):
            if not is_duplicate_content(
                record.author_display_name, record.raw_content, display_name, raw_content
            ):
                continue
            age = record.age_ms(now)
            if age < self.config.outgoing_window_ms:
                self.log.info(
                    "DIFF:%dms skipping duplicate message from %s: %s",
                    age,
                    display_name,
                    extract_chat_text(raw_content),
                )
                return True
            break
        self.log.debug("Sending: %s, %s", display_name, extract_chat_text(raw_content))
        return False

    def register(self, record: MessageRecord) -> bool:
        inserted = self.store.insert(record)
        if inserted:
            self.log.debug("Registered %s (%s)", record.id, record.author_display_name)
        return inserted

    def find_duplicates(self, records: List[MessageRecord]) -> List[MessageRecord]:
        targets: Dict[str, MessageRecord] = {}
        max_delta = self.config.max_pair_delta_ms
        for i, left in enumerate(records):
            for right in records[i + 1 :]:
                if not is_duplicate_record(left, right):
                    continue
                if max_delta is not None and abs(left.sent_at - right.sent_at) * 1000 >= max_delta:
                    continue
                target = newer_of(left, right)
                targets.setdefault(target.id, target)
        return list(targets.values())

    async def reconcile(self) -> Optional[SweepReport]:
        if self._sweeping:
            return None
        now = self._clock()
        if (
            self._last_sweep is not None
            and (now - self._last_sweep) * 1000 < self.config.sweep_interval_ms
        ):
            return None
        self._last_sweep = now
        if not self.config.enabled:
            # no matching or deletes, but the window still has to age out
            expired = self.store.snapshot_window(self.config.retention_ms, now).expired_ids
            self.store.remove_many(expired)
            return None
        self._sweeping = True
        try:
            return await self._sweep(now)
        finally:
            self._sweeping = False

    async def _sweep(self, now: float) -> SweepReport:
        snapshot = self.store.snapshot_window(self.config.retention_ms, now)
        report = SweepReport(scanned=len(snapshot.fresh), expired=len(snapshot.expired_ids))
        targets = self.find_duplicates(snapshot.fresh)
        report.duplicates = len(targets)
        if targets:
            self.log.debug(
                "Sweep recent=%s expired=%s duplicates=%s",
                report.scanned,
                report.expired,
                report.duplicates,
            )

        results = await asyncio.gather(
            *(self.deleter.delete(target.id) for target in targets),
            return_exceptions=True,
        )

        confirmed: List[str] = []
        failures: List[tuple] = []
        for target, result in zip(targets, results):
            if isinstance(result, DeleteNotFound):
                self.log.debug("Already gone: %s", target.id)
                report.missing.append(target.id)
                confirmed.append(target.id)
            elif isinstance(result, Exception):
                failures.append((target, result))
            elif isinstance(result, BaseException):
                raise result
            else:
                self.log.info(
                    "Delete: (%s) %s [%s]",
                    target.author_display_name,
                    target.chat_text,
                    target.id,
                )
                report.deleted.append(target.id)
                confirmed.append(target.id)

        if failures:
            # confirmed deletes still leave the window so they are never retried
            self.store.remove_many(confirmed)
            target, exc = failures[0]
            self.log.error(
                "Sweep aborted, %s of %s deletes failed (first: %s)",
                len(failures),
                len(targets),
                exc,
            )
            if isinstance(exc, DeleteFailed):
                raise exc
            raise DeleteFailed(target.id, str(exc)) from exc

        self.store.remove_many(snapshot.expired_ids.union(confirmed))
        return report
