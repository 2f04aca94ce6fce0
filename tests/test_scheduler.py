"""Tests for the wall-clock aligned sweep scheduler."""

import asyncio
from datetime import datetime, timedelta

import pytest

from finnotify.config import SchedulerConfig
from finnotify.core.scheduler import (
    FinancialScheduler,
    ScheduleState,
    next_fire,
    seconds_until,
)
from finnotify.errors import ValidationError


class RecordingSweep:
    """Stands in for a detector; records the clock at each call."""

    def __init__(self, clock, result=None, error=None, duration=None):
        self.clock = clock
        self.calls: list[datetime] = []
        self.result = [] if result is None else result
        self.error = error
        self.duration = duration

    async def sweep(self):
        self.calls.append(self.clock.now())
        if self.duration is not None:
            self.clock.current += self.duration
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def sweeps(clock):
    return {
        "recurring": RecordingSweep(clock),
        "budgets": RecordingSweep(clock),
        "goals": RecordingSweep(clock),
        "summary": RecordingSweep(clock, result=2),
    }


def make_scheduler(sweeps, clock, **overrides):
    config = SchedulerConfig(**{"run_daily_on_start": False, **overrides})
    return FinancialScheduler(
        config,
        sweeps["recurring"],
        sweeps["budgets"],
        sweeps["goals"],
        sweeps["summary"],
        clock,
    )


# ---------------------------------------------------------------------------
# Boundary math
# ---------------------------------------------------------------------------

class TestBoundaries:
    def test_next_daily(self):
        assert next_fire("1 0 * * *", datetime(2026, 3, 15, 12, 0)) == datetime(2026, 3, 16, 0, 1)

    def test_strictly_after(self):
        at = datetime(2026, 3, 16, 0, 1)
        assert next_fire("1 0 * * *", at) == datetime(2026, 3, 17, 0, 1)

    def test_next_monthly_across_year(self):
        assert next_fire("10 0 1 * *", datetime(2026, 12, 15)) == datetime(2027, 1, 1, 0, 10)

    def test_seconds_until(self):
        assert seconds_until("1 0 * * *", datetime(2026, 3, 15, 23, 59)) == 120.0

    def test_is_month_start(self):
        assert FinancialScheduler.is_month_start(datetime(2026, 4, 1, 0, 10))
        assert not FinancialScheduler.is_month_start(datetime(2026, 4, 2, 0, 10))

    def test_invalid_cron(self, sweeps, clock):
        with pytest.raises(ValueError):
            make_scheduler(sweeps, clock, daily_cron="not a cron")


# ---------------------------------------------------------------------------
# Timer chains
# ---------------------------------------------------------------------------

class TestTimerChains:
    async def test_daily_fires_on_boundaries(self, sweeps, clock):
        scheduler = make_scheduler(sweeps, clock)
        await scheduler.start()
        await clock.run_until(datetime(2026, 3, 18, 12, 0))
        await scheduler.stop()

        assert sweeps["recurring"].calls == [
            datetime(2026, 3, 16, 0, 1),
            datetime(2026, 3, 17, 0, 1),
            datetime(2026, 3, 18, 0, 1),
        ]
        assert len(sweeps["budgets"].calls) == 3
        assert len(sweeps["goals"].calls) == 3

    async def test_sweeps_run_in_order(self, clock):
        order = []

        class Named:
            def __init__(self, name):
                self.name = name

            async def sweep(self):
                order.append(self.name)

        scheduler = FinancialScheduler(
            SchedulerConfig(run_daily_on_start=True),
            Named("recurring"),
            Named("budgets"),
            Named("goals"),
            Named("summary"),
            clock,
        )
        await scheduler.start()
        await clock.settle()
        await scheduler.stop()
        assert order == ["recurring", "budgets", "goals"]

    async def test_run_on_start(self, sweeps, clock):
        scheduler = make_scheduler(sweeps, clock, run_daily_on_start=True)
        await scheduler.start()
        await clock.run_until(datetime(2026, 3, 16, 12, 0))
        await scheduler.stop()
        assert sweeps["recurring"].calls == [
            datetime(2026, 3, 15, 12, 0),
            datetime(2026, 3, 16, 0, 1),
        ]

    async def test_no_drift_after_slow_sweep(self, clock):
        slow = RecordingSweep(clock, duration=timedelta(minutes=7))
        others = {name: RecordingSweep(clock) for name in ("budgets", "goals", "summary")}
        scheduler = make_scheduler({"recurring": slow, **others}, clock)
        await scheduler.start()
        await clock.run_until(datetime(2026, 3, 19, 0, 0))
        await scheduler.stop()
        assert [c.time() for c in slow.calls] == [datetime(2026, 1, 1, 0, 1).time()] * 3

    async def test_failing_sweep_does_not_break_chain(self, sweeps, clock):
        sweeps["budgets"].error = RuntimeError("db locked")
        scheduler = make_scheduler(sweeps, clock)
        await scheduler.start()
        await clock.run_until(datetime(2026, 3, 17, 12, 0))
        await scheduler.stop()

        assert len(sweeps["budgets"].calls) == 2
        assert len(sweeps["goals"].calls) == 2
        assert len(sweeps["recurring"].calls) == 2

    async def test_monthly_fires_on_first_of_month(self, sweeps, clock):
        scheduler = make_scheduler(sweeps, clock)
        await scheduler.start()
        await clock.run_until(datetime(2026, 5, 2, 0, 0))
        await scheduler.stop()

        assert sweeps["summary"].calls == [
            datetime(2026, 4, 1, 0, 10),
            datetime(2026, 5, 1, 0, 10),
        ]

    async def test_states(self, sweeps, clock):
        scheduler = make_scheduler(sweeps, clock)
        assert scheduler.states["daily"] is ScheduleState.STOPPED

        await scheduler.start()
        await clock.settle()
        assert scheduler.running
        assert scheduler.states["daily"] is ScheduleState.ARMED_DAILY
        assert scheduler.states["monthly"] is ScheduleState.ARMED_MONTHLY

        await scheduler.stop()
        assert not scheduler.running
        assert set(scheduler.states.values()) == {ScheduleState.STOPPED}

    async def test_start_and_stop_idempotent(self, sweeps, clock):
        scheduler = make_scheduler(sweeps, clock, run_daily_on_start=True)
        await scheduler.stop()
        await scheduler.start()
        await scheduler.start()
        await clock.settle()
        assert len(sweeps["recurring"].calls) == 1

        await scheduler.stop()
        await scheduler.stop()
        assert not scheduler.running

    async def test_stop_waits_for_inflight_sweep(self, sweeps, clock):
        release = asyncio.Event()
        finished = []

        class Blocking:
            async def sweep(self):
                await release.wait()
                finished.append(True)

        sweeps["recurring"] = Blocking()
        scheduler = make_scheduler(sweeps, clock, run_daily_on_start=True)
        await scheduler.start()
        await clock.settle()

        stopping = asyncio.create_task(scheduler.stop())
        await clock.settle()
        assert not stopping.done()
        assert not scheduler.running
        assert finished == []

        release.set()
        await stopping
        assert finished == [True]
        assert len(sweeps["budgets"].calls) == 1
        assert len(sweeps["goals"].calls) == 1


# ---------------------------------------------------------------------------
# Manual triggers
# ---------------------------------------------------------------------------

class TestManualTriggers:
    async def test_trigger_returns_result(self, sweeps, clock):
        scheduler = make_scheduler(sweeps, clock)
        assert await scheduler.trigger("summary") == 2
        assert await scheduler.trigger_recurring_sweep() == []
        assert len(sweeps["recurring"].calls) == 1

    async def test_trigger_reraises(self, sweeps, clock):
        sweeps["goals"].error = RuntimeError("boom")
        scheduler = make_scheduler(sweeps, clock)
        with pytest.raises(RuntimeError, match="boom"):
            await scheduler.trigger_goal_sweep()

    async def test_unknown_kind(self, sweeps, clock):
        scheduler = make_scheduler(sweeps, clock)
        with pytest.raises(ValidationError):
            await scheduler.trigger("weekly")

    async def test_trigger_budget_alert_sweep(self, sweeps, clock):
        scheduler = make_scheduler(sweeps, clock)
        await scheduler.trigger("budgets")
        await scheduler.trigger_monthly_summary_sweep()
        assert len(sweeps["budgets"].calls) == 1
        assert len(sweeps["summary"].calls) == 1
