"""Wall-clock aligned daily and monthly sweep scheduler."""

from __future__ import annotations

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog
from croniter import croniter

from finnotify.config import SchedulerConfig
from finnotify.detectors.budgets import BudgetMonitor
from finnotify.detectors.goals import GoalMonitor
from finnotify.detectors.recurring import RecurringMaterializer
from finnotify.detectors.summary import MonthlySummaryReporter
from finnotify.errors import ValidationError
from finnotify.utils.clock import Clock
from finnotify.utils.logging import get_logger

log = get_logger(__name__)

Sweep = Callable[[], Awaitable[Any]]


class ScheduleState(str, Enum):
    STOPPED = "stopped"
    ARMED_DAILY = "armed_daily"
    ARMED_MONTHLY = "armed_monthly"


def next_fire(cron_expr: str, after: datetime) -> datetime:
    """First boundary of ``cron_expr`` strictly after ``after``."""
    return croniter(cron_expr, after).get_next(datetime)


def seconds_until(cron_expr: str, now: datetime) -> float:
    return (next_fire(cron_expr, now) - now).total_seconds()


class FinancialScheduler:
    """Runs the daily and monthly detector sweeps.

    Each re-arm derives the next boundary from the previous one and the
    clock, so timer error does not accumulate. A failing sweep is logged and
    the chain continues.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        recurring: RecurringMaterializer,
        budgets: BudgetMonitor,
        goals: GoalMonitor,
        summary: MonthlySummaryReporter,
        clock: Clock | None = None,
    ) -> None:
        for expr in (config.daily_cron, config.monthly_cron, config.monthly_check_cron):
            if not croniter.is_valid(expr):
                raise ValueError(f"Invalid cron expression: {expr}")
        self._config = config
        self._recurring = recurring
        self._budgets = budgets
        self._goals = goals
        self._summary = summary
        self._clock = clock or Clock()
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._inflight: set[asyncio.Task[None]] = set()
        self.states: dict[str, ScheduleState] = {
            "daily": ScheduleState.STOPPED,
            "monthly": ScheduleState.STOPPED,
        }

    @property
    def daily_sweeps(self) -> list[tuple[str, Sweep]]:
        return [
            ("recurring", self._recurring.sweep),
            ("budgets", self._budgets.sweep),
            ("goals", self._goals.sweep),
        ]

    @property
    def monthly_sweeps(self) -> list[tuple[str, Sweep]]:
        return [("summary", self._summary.sweep)]

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._tasks:
            return
        now = self._clock.now()
        self._tasks["daily"] = asyncio.create_task(self._daily_loop(), name="schedule-daily")
        self._tasks["monthly"] = asyncio.create_task(self._monthly_loop(), name="schedule-monthly")
        log.info(
            "scheduler_started",
            next_daily=next_fire(self._config.daily_cron, now).isoformat(),
            next_monthly=next_fire(self._config.monthly_cron, now).isoformat(),
        )

    async def stop(self) -> None:
        """Cancel armed timers, then wait for in-flight sweeps to finish."""
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for name in self.states:
            self.states[name] = ScheduleState.STOPPED

        inflight = list(self._inflight)
        if inflight:
            log.info("scheduler_draining", inflight=len(inflight))
            await asyncio.gather(*inflight, return_exceptions=True)
        if tasks:
            log.info("scheduler_stopped")

    # ------------------------------------------------------------------
    # Timer chains
    # ------------------------------------------------------------------

    async def _sleep_until(self, schedule: str, state: ScheduleState, fire_at: datetime) -> None:
        self.states[schedule] = state
        delay = (fire_at - self._clock.now()).total_seconds()
        log.debug("schedule_armed", schedule=schedule, fire_at=fire_at.isoformat(), delay=delay)
        await self._clock.sleep(delay)

    def _next_after(self, cron_expr: str, previous: datetime) -> datetime:
        return next_fire(cron_expr, max(previous, self._clock.now()))

    async def _daily_loop(self) -> None:
        if self._config.run_daily_on_start:
            await self._run("daily", self.daily_sweeps)

        fire_at = next_fire(self._config.daily_cron, self._clock.now())
        while True:
            await self._sleep_until("daily", ScheduleState.ARMED_DAILY, fire_at)
            await self._run("daily", self.daily_sweeps)
            fire_at = self._next_after(self._config.daily_cron, fire_at)

    async def _monthly_loop(self) -> None:
        fire_at = next_fire(self._config.monthly_cron, self._clock.now())
        await self._sleep_until("monthly", ScheduleState.ARMED_MONTHLY, fire_at)
        await self._run("monthly", self.monthly_sweeps)

        # After the first month boundary, tick daily and fire on day 1.
        while True:
            fire_at = self._next_after(self._config.monthly_check_cron, fire_at)
            await self._sleep_until("monthly", ScheduleState.ARMED_MONTHLY, fire_at)
            if self.is_month_start(self._clock.now()):
                await self._run("monthly", self.monthly_sweeps)

    @staticmethod
    def is_month_start(now: datetime) -> bool:
        return now.day == 1

    async def _run(self, schedule: str, sweeps: list[tuple[str, Sweep]]) -> None:
        # Shielded so that stop() cancelling the timer does not abort the sweep.
        task = asyncio.create_task(self._run_sweeps(schedule, sweeps))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        await asyncio.shield(task)

    async def _run_sweeps(self, schedule: str, sweeps: list[tuple[str, Sweep]]) -> None:
        with structlog.contextvars.bound_contextvars(schedule=schedule):
            log.info("sweep_started")
            for name, sweep in sweeps:
                try:
                    await sweep()
                except Exception:
                    log.exception("sweep_failed", sweep=name)
            log.info("sweep_finished")

    # ------------------------------------------------------------------
    # Manual triggers
    # ------------------------------------------------------------------

    async def _trigger(self, name: str, sweep: Sweep) -> Any:
        try:
            result = await sweep()
        except Exception:
            log.exception("manual_sweep_failed", sweep=name)
            raise
        log.info("manual_sweep_triggered", sweep=name)
        return result

    async def trigger_recurring_sweep(self) -> Any:
        return await self._trigger("recurring", self._recurring.sweep)

    async def trigger_budget_alert_sweep(self) -> Any:
        return await self._trigger("budgets", self._budgets.sweep)

    async def trigger_goal_sweep(self) -> Any:
        return await self._trigger("goals", self._goals.sweep)

    async def trigger_monthly_summary_sweep(self) -> Any:
        return await self._trigger("summary", self._summary.sweep)

    async def trigger(self, kind: str) -> Any:
        triggers = {
            "recurring": self.trigger_recurring_sweep,
            "budgets": self.trigger_budget_alert_sweep,
            "goals": self.trigger_goal_sweep,
            "summary": self.trigger_monthly_summary_sweep,
        }
        if kind not in triggers:
            raise ValidationError(f"Unknown sweep: {kind}")
        return await triggers[kind]()
