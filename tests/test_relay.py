import asyncio

import pytest

from chatbridge.config import AppConfig, FormatConfig
from chatbridge.core.dedup import DuplicateFilter
from chatbridge.core.errors import DeleteFailed, SendFailed
from chatbridge.core.models import ChatEvent, MessageRecord
from chatbridge.core.store import RecordStore
from chatbridge.relay import ChatRelay
from chatbridge.storage.event_buffer import EventBuffer


class FakeClock:
    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeSender:
    def __init__(self, clock: FakeClock, fail: bool = False) -> None:
        self.clock = clock
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    async def send(self, display_name, raw_content, avatar_url=None) -> MessageRecord:
        if self.fail:
            raise SendFailed("webhook returned 500")
        self.sent.append((display_name, raw_content))
        return MessageRecord(
            id=str(len(self.sent)),
            author_display_name=display_name,
            raw_content=raw_content,
            sent_at=self.clock(),
        )


class FakeDeleter:
    def __init__(self, failing: bool = False) -> None:
        self.calls: list[str] = []
        self.failing = failing

    async def delete(self, message_id: str) -> None:
        self.calls.append(message_id)
        if self.failing:
            raise DeleteFailed(message_id, "boom")


def _relay(fail_send: bool = False, failing_delete: bool = False):
    config = AppConfig()
    clock = FakeClock()
    store = RecordStore()
    deleter = FakeDeleter(failing=failing_delete)
    dedup = DuplicateFilter(store=store, deleter=deleter, config=config.dedup, clock=clock)
    sender = FakeSender(clock, fail=fail_send)
    relay = ChatRelay(config=config, dedup=dedup, sender=sender, events=EventBuffer())
    return relay, sender, deleter, clock


def test_relay_formats_sends_and_registers() -> None:
    relay, sender, _, _ = _relay()

    record = asyncio.run(relay.relay(ChatEvent(chat_type="say", sender="Rhoda", message=" hello ")))

    assert record is not None
    assert sender.sent == [("Rhoda", "**[Say]** hello")]
    assert record.id in relay.dedup.store
    assert record.chat_text == "hello"


def test_relay_suppresses_repeat_inside_window() -> None:
    relay, sender, _, clock = _relay()
    event = ChatEvent(chat_type="fc", sender="Rhoda", message="grats!")

    assert asyncio.run(relay.relay(event)) is not None
    clock.now += 1.0
    assert asyncio.run(relay.relay(event)) is None
    clock.now += 1.5
    assert asyncio.run(relay.relay(event)) is not None

    assert len(sender.sent) == 2
    assert relay.events.counts["suppressed"] == 1


def test_relay_ignores_disabled_chat_types_and_blank_messages() -> None:
    relay, sender, _, _ = _relay()
    relay.config.format = FormatConfig(chat_types=["say"])

    assert asyncio.run(relay.relay(ChatEvent(chat_type="shout", sender="Rhoda", message="hi"))) is None
    assert asyncio.run(relay.relay(ChatEvent(chat_type="say", sender="Rhoda", message="   "))) is None
    assert sender.sent == []
    assert relay.events.counts["ignored"] == 1


def test_display_name_includes_world_when_known() -> None:
    relay, _, _, _ = _relay()
    event = ChatEvent(chat_type="say", sender="Rhoda Lune", message="hi", world="Cactuar")
    assert relay.display_name(event) == "Rhoda Lune@Cactuar"
    assert len(relay.display_name(ChatEvent(chat_type="say", sender="x" * 120, message="hi"))) == 80


def test_format_body_uses_prefix_and_unknown_slug() -> None:
    relay, _, _, _ = _relay()
    relay.config.format = FormatConfig(prefixes={"tell": "> "})
    assert relay.format_body(ChatEvent(chat_type="tell", sender="a", message="psst")) == "> **[Tell]** psst"
    assert relay.format_body(ChatEvent(chat_type="bozja", sender="a", message="go")) == "**[Bozja]** go"


def test_send_failure_is_not_registered() -> None:
    relay, _, _, _ = _relay(fail_send=True)

    with pytest.raises(SendFailed):
        asyncio.run(relay.relay(ChatEvent(chat_type="say", sender="Rhoda", message="hello")))

    assert len(relay.dedup.store) == 0
    assert relay.events.counts["send_failed"] == 1
    assert not relay._in_flight


def test_sweep_records_reconciled_event() -> None:
    relay, _, deleter, clock = _relay()
    relay.dedup.register(MessageRecord("1", "Rhoda", "[Say] hi", clock.now))
    relay.dedup.register(MessageRecord("2", "Rhoda", "[Say] hi", clock.now + 0.05))
    clock.now += 0.2

    report = asyncio.run(relay.sweep())

    assert report is not None
    assert deleter.calls == ["2"]
    assert relay.events.counts["reconciled"] == 1
    assert relay.stats()["store_size"] == 1


def test_run_sweeps_survives_delete_failures() -> None:
    relay, _, deleter, clock = _relay(failing_delete=True)
    relay.dedup.register(MessageRecord("1", "Rhoda", "[Say] hi", clock.now))
    relay.dedup.register(MessageRecord("2", "Rhoda", "[Say] hi", clock.now + 0.05))
    clock.now += 0.2

    async def scenario() -> None:
        stop = asyncio.Event()
        task = asyncio.create_task(relay.run_sweeps(stop))
        await asyncio.sleep(0.05)
        stop.set()
        await task

    asyncio.run(scenario())

    assert deleter.calls == ["2"]
    assert relay.events.counts["sweep_failed"] == 1
    assert relay.stats()["store_size"] == 2
