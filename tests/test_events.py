from types import SimpleNamespace

from tonefield.core.events import (
    EventEmitter,
    StabilityEvents,
    StabilityEventType,
    ThrottledEmitter,
)


def update(is_stable=False, crossed=False):
    return SimpleNamespace(is_stable=is_stable, crossed=crossed)


class TestEventEmitter:
    def test_on_emit_off(self):
        emitter = EventEmitter()
        seen = []
        callback = seen.append
        emitter.on(StabilityEventType.READING, callback)
        emitter.on(StabilityEventType.READING, callback)
        assert emitter.listener_count(StabilityEventType.READING) == 1

        emitter.emit(StabilityEventType.READING, 1)
        emitter.off(StabilityEventType.READING, callback)
        emitter.emit(StabilityEventType.READING, 2)
        assert seen == [1]

    def test_listener_errors_are_contained(self):
        emitter = EventEmitter()
        seen = []

        def broken(value):
            raise RuntimeError("listener failed")

        emitter.on("event", broken)
        emitter.on("event", seen.append)
        emitter.emit("event", 5)
        assert seen == [5]

    def test_emit_without_listeners(self):
        EventEmitter().emit("nothing")

    def test_clear(self):
        emitter = EventEmitter()
        emitter.on("event", print)
        emitter.clear()
        assert emitter.listener_count("event") == 0


class TestThrottledEmitter:
    def setup_method(self):
        self.events = StabilityEvents()
        self.readings = []
        self.locks = []
        self.unlocks = []
        self.events.on_reading(lambda u, ts: self.readings.append(ts))
        self.events.on_locked(lambda u, ts: self.locks.append(ts))
        self.events.on_unlocked(lambda u, ts: self.unlocks.append(ts))
        self.emitter = ThrottledEmitter(self.events, interval_s=0.05)

    def test_readings_are_rate_limited(self):
        times = [0.0, 0.02, 0.04, 0.06, 0.08, 0.12]
        results = [self.emitter.publish(update(), now=t) for t in times]
        assert results == [True, False, False, True, False, True]
        assert self.readings == [0.0, 0.06, 0.12]

    def test_stable_updates_always_emit(self):
        self.emitter.publish(update(), now=0.0)
        assert self.emitter.publish(update(is_stable=True), now=0.01)
        assert self.emitter.publish(update(is_stable=True), now=0.02)

    def test_crossings_emit_lock_events(self):
        self.emitter.publish(update(), now=0.0)
        assert self.emitter.publish(update(is_stable=True, crossed=True), now=0.001)
        self.emitter.publish(update(is_stable=False, crossed=True), now=0.002)
        assert self.locks == [0.001]
        assert self.unlocks == [0.002]
        assert len(self.readings) == 3

    def test_reset(self):
        self.emitter.publish(update(), now=0.0)
        self.emitter.reset()
        assert self.emitter.publish(update(), now=0.01)

    def test_default_clock(self):
        emitter = ThrottledEmitter(self.events, clock=lambda: 42.0)
        emitter.publish(update())
        assert self.readings == [42.0]

    def test_spawn_shares_events_not_history(self):
        self.emitter.publish(update(), now=0.0)
        sibling = self.emitter.spawn()
        assert sibling.events is self.events
        assert sibling.interval_s == self.emitter.interval_s
        assert sibling.publish(update(), now=0.01)
        assert not self.emitter.publish(update(), now=0.02)
