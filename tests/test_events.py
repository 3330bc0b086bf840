import pytest

from pollwatch.events import CHANGE, ERROR, TICK, ErrorEvent, EventEmitter, TickEvent


def test_listeners_run_in_registration_order():
    emitter = EventEmitter()
    calls = []
    emitter.on(TICK, lambda event: calls.append(("a", event.timestamp)))
    emitter.on(TICK, lambda event: calls.append(("b", event.timestamp)))

    delivered = emitter.emit(TICK, TickEvent(timestamp=1))

    assert delivered == 2
    assert calls == [("a", 1), ("b", 1)]


def test_failing_listener_does_not_block_others():
    emitter = EventEmitter()
    calls = []

    def broken(event):
        raise RuntimeError("listener bug")

    emitter.on(TICK, broken)
    emitter.on(TICK, calls.append)

    delivered = emitter.emit(TICK, TickEvent(timestamp=5))

    assert delivered == 1
    assert len(calls) == 1


def test_once_listener_fires_a_single_time():
    emitter = EventEmitter()
    calls = []
    emitter.once(TICK, calls.append)

    emitter.emit(TICK, TickEvent(timestamp=1))
    emitter.emit(TICK, TickEvent(timestamp=2))

    assert [event.timestamp for event in calls] == [1]
    assert emitter.listener_count(TICK) == 0


def test_off_removes_listener():
    emitter = EventEmitter()
    listener = emitter.on(CHANGE, lambda event: None)

    assert emitter.off(CHANGE, listener) is True
    assert emitter.listener_count(CHANGE) == 0
    assert emitter.emit(CHANGE, object()) == 0


def test_off_unknown_listener_returns_false():
    emitter = EventEmitter()

    def listener(event):
        return None

    assert emitter.off(ERROR, listener) is False
    emitter.on(ERROR, listener)
    assert emitter.off(ERROR, listener) is True


def test_listener_may_unregister_during_emit():
    emitter = EventEmitter()
    calls = []

    def first(event):
        calls.append("first")
        emitter.off(TICK, second)

    def second(event):
        calls.append("second")

    emitter.on(TICK, first)
    emitter.on(TICK, second)

    emitter.emit(TICK, TickEvent(timestamp=1))
    emitter.emit(TICK, TickEvent(timestamp=2))

    assert calls == ["first", "second", "first"]


def test_clear_and_unknown_kind():
    emitter = EventEmitter()
    emitter.on(TICK, lambda event: None)
    emitter.on(ERROR, lambda event: None)

    emitter.clear(TICK)
    assert emitter.listener_count(TICK) == 0
    assert emitter.listener_count(ERROR) == 1

    emitter.clear()
    assert emitter.listener_count(ERROR) == 0

    with pytest.raises(ValueError):
        emitter.on("changed", lambda event: None)


def test_error_event_message_falls_back_to_type_name():
    assert ErrorEvent(key="k", error=TimeoutError()).message == "TimeoutError"
    assert ErrorEvent(key="k", error=ValueError("bad")).message == "bad"


@pytest.mark.asyncio
async def test_coroutine_listeners_are_scheduled_and_drained():
    emitter = EventEmitter()
    calls = []

    async def listener(event):
        calls.append(event.timestamp)

    emitter.on(TICK, listener)
    emitter.emit(TICK, TickEvent(timestamp=9))
    await emitter.drain()

    assert calls == [9]
