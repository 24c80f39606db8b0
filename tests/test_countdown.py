"""Tests for CountdownEngine, driven by a manual clock."""
import asyncio

import pytest

from minipomodoro.countdown import (
    Completed,
    CountdownEngine,
    Started,
    Stopped,
    Tick,
    format_duration,
)
from minipomodoro.errors import AlreadyRunningError


class Recorder:
    def __init__(self):
        self.events = []

    def __call__(self, event):
        self.events.append(event)

    @property
    def ticks(self):
        return [(e.time_left_ms, e.elapsed_ms, e.duration_ms) for e in self.events if isinstance(e, Tick)]

    def count(self, kind):
        return sum(1 for e in self.events if isinstance(e, kind))


def make_engine(clock, scheduler, duration_ms=3000):
    return CountdownEngine(duration_ms, clock=clock, scheduler=scheduler)


# ---- Scheduling ----

class TestCountdownRun:
    def test_three_second_countdown(self, clock, scheduler):
        engine = make_engine(clock, scheduler)
        rec = Recorder()

        engine.start(rec, rec, rec)
        assert rec.events[0] == Started(0)
        assert rec.ticks == [(3000, 0, 3000)]

        scheduler.advance(1000)
        assert rec.ticks[-1] == (2000, 1000, 3000)
        scheduler.advance(1000)
        assert rec.ticks[-1] == (1000, 2000, 3000)
        assert rec.count(Completed) == 0

        scheduler.advance(1000)
        assert rec.events[-1] == Completed()
        assert clock.now == 3000

        scheduler.advance(10_000)
        assert rec.ticks == [(3000, 0, 3000), (2000, 1000, 3000), (1000, 2000, 3000)]
        assert rec.count(Completed) == 1

    def test_completion_is_terminal(self, clock, scheduler):
        engine = make_engine(clock, scheduler, duration_ms=5000)
        rec = Recorder()
        engine.start(rec, rec, rec)

        scheduler.advance(60_000)

        assert rec.count(Completed) == 1
        assert isinstance(rec.events[-1], Completed)
        assert not engine.is_running
        assert engine.pending_tick is None
        assert scheduler.pending == []

    def test_start_then_stop(self, clock, scheduler):
        engine = make_engine(clock, scheduler)
        rec = Recorder()
        engine.start(rec, rec, rec)
        handle = engine.pending_tick

        assert engine.stop() == Stopped()
        assert handle.cancelled
        assert engine.pending_tick is None
        assert not engine.is_running

        scheduler.advance(10_000)
        assert rec.count(Completed) == 0
        assert rec.ticks == [(3000, 0, 3000)]

    def test_stop_when_idle_is_noop(self, clock, scheduler):
        engine = make_engine(clock, scheduler)
        assert engine.stop() is None
        assert engine.stop() is None
        assert scheduler.timers == []

    def test_double_start_rejected(self, clock, scheduler):
        engine = make_engine(clock, scheduler)
        rec = Recorder()
        engine.start(rec, rec, rec)

        with pytest.raises(AlreadyRunningError):
            engine.start(rec, rec, rec)
        with pytest.raises(AlreadyRunningError):
            engine.resume(0, rec, rec)
        assert rec.count(Started) == 1

    def test_restart_after_stop(self, clock, scheduler):
        engine = make_engine(clock, scheduler)
        rec = Recorder()
        engine.start(rec, rec, rec)
        scheduler.advance(1500)
        engine.stop()

        assert engine.start(rec, rec, rec) == 1500
        assert rec.ticks[-1] == (3000, 0, 3000)

    def test_stop_from_tick_callback(self, clock, scheduler):
        engine = make_engine(clock, scheduler, duration_ms=10_000)
        rec = Recorder()

        def on_tick(event):
            rec(event)
            if event.elapsed_ms == 2000:
                engine.stop()

        engine.start(rec, rec, on_tick)
        scheduler.advance(10_000)

        assert rec.ticks[-1] == (8000, 2000, 10_000)
        assert rec.count(Completed) == 0
        assert scheduler.pending == []


# ---- Drift correction ----

class TestDriftCorrection:
    def test_late_tick_shortens_next_delay(self, clock, scheduler):
        engine = make_engine(clock, scheduler, duration_ms=10_000)
        rec = Recorder()
        engine.start(rec, rec, rec)

        scheduler.suspend(1250)
        scheduler.advance(0)

        assert rec.ticks[-1] == (9000, 1000, 10_000)
        assert engine.pending_tick.due == 2000

    def test_suspended_process_jumps_to_latest_tick(self, clock, scheduler):
        engine = make_engine(clock, scheduler, duration_ms=60_000)
        rec = Recorder()
        engine.start(rec, rec, rec)
        scheduler.advance(1000)

        # the tick due at 2000 only gets to run at 6300
        scheduler.suspend(5300)
        scheduler.advance(0)

        assert rec.ticks[-1] == (54_000, 6000, 60_000)
        assert engine.pending_tick.due == 7000

        scheduler.advance(700)
        assert rec.ticks[-1] == (53_000, 7000, 60_000)
        assert engine.pending_tick.due == 8000

        scheduler.advance(1000)
        assert rec.ticks[-1] == (52_000, 8000, 60_000)

    def test_suspended_past_the_end_completes(self, clock, scheduler):
        engine = make_engine(clock, scheduler, duration_ms=3000)
        rec = Recorder()
        engine.start(rec, rec, rec)

        scheduler.suspend(45_000)
        scheduler.advance(0)

        assert rec.events[-1] == Completed()
        assert rec.ticks == [(3000, 0, 3000)]


# ---- Resume ----

class TestResume:
    def test_resume_fires_no_start_event(self, clock, scheduler):
        clock.now = 12_500
        engine = make_engine(clock, scheduler, duration_ms=10_000)
        rec = Recorder()

        engine.resume(10_000, rec, rec)

        assert rec.count(Started) == 0
        assert engine.start_timestamp == 10_000
        assert rec.ticks == [(8000, 2000, 10_000)]
        assert engine.pending_tick.due == 13_000

    def test_resume_then_stop_matches_start_then_stop(self, clock, scheduler):
        started = make_engine(clock, scheduler)
        resumed = make_engine(clock, scheduler)
        rec = Recorder()

        started.start(rec, rec, rec)
        resumed.resume(clock.now, rec, rec)

        assert started.stop() == resumed.stop() == Stopped()
        assert (started.is_running, started.pending_tick) == (resumed.is_running, resumed.pending_tick)
        assert rec.count(Started) == 1
        assert rec.count(Completed) == 0

    def test_resume_runs_to_completion(self, clock, scheduler):
        clock.now = 1400
        engine = make_engine(clock, scheduler, duration_ms=3000)
        rec = Recorder()
        engine.resume(0, rec, rec)

        scheduler.advance(5000)

        assert rec.ticks == [(2000, 1000, 3000), (1000, 2000, 3000)]
        assert rec.count(Completed) == 1


# ---- Duration ----

class TestDuration:
    @pytest.mark.parametrize("value", ["1000", 1.5, True, None])
    def test_rejects_non_integers(self, clock, scheduler, value):
        engine = make_engine(clock, scheduler)
        with pytest.raises(TypeError):
            engine.duration_ms = value
        assert engine.duration_ms == 3000

    @pytest.mark.parametrize("value", [0, -1000])
    def test_rejects_non_positive(self, clock, scheduler, value):
        with pytest.raises(ValueError):
            CountdownEngine(value, clock=clock, scheduler=scheduler)

    def test_default_duration(self):
        assert CountdownEngine().duration_ms == 25 * 60 * 1000


def test_format_duration():
    assert format_duration(0) == "00:00:00"
    assert format_duration(1500) == "00:00:01"
    assert format_duration(3_723_000) == "01:02:03"
    assert format_duration(-61_000) == "-00:01:01"


def test_runs_on_event_loop():
    async def scenario():
        done = asyncio.get_running_loop().create_future()
        rec = Recorder()

        def on_complete(event):
            rec(event)
            done.set_result(True)

        engine = CountdownEngine(30, tick_size_ms=10)
        engine.start(rec, on_complete, rec)
        await asyncio.wait_for(done, timeout=5)
        return engine, rec

    engine, rec = asyncio.run(scenario())
    assert rec.count(Completed) == 1
    assert not engine.is_running
    lefts = [t[0] for t in rec.ticks]
    assert lefts[0] == 30
    assert lefts == sorted(lefts, reverse=True)
