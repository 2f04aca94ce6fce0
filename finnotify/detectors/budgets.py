"""Detect budgets that have crossed the warning or exceeded threshold."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any

from finnotify.models import Budget, BudgetPeriod, BudgetStatus, NotificationEvent, WebhookEvent
from finnotify.notify.orchestrator import NotificationOrchestrator
from finnotify.store.ledger import LedgerStore
from finnotify.utils.clock import Clock
from finnotify.utils.logging import get_logger

log = get_logger(__name__)

WARNING_PERCENT = 80.0
EXCEEDED_PERCENT = 100.0


def classify(percentage: float) -> BudgetStatus:
    if percentage >= EXCEEDED_PERCENT:
        return BudgetStatus.EXCEEDED
    if percentage >= WARNING_PERCENT:
        return BudgetStatus.WARNING
    return BudgetStatus.WITHIN_BUDGET


def period_window(budget: Budget, now: datetime) -> tuple[datetime, datetime]:
    """Spend window for ``budget`` containing ``now``."""
    if budget.end_date is not None:
        return budget.start_date, budget.end_date

    day_start = datetime.combine(now.date(), time.min)
    if budget.period is BudgetPeriod.DAILY:
        return day_start, datetime.combine(now.date(), time.max)
    if budget.period is BudgetPeriod.WEEKLY:
        # Weeks start on Sunday.
        start = day_start - timedelta(days=(now.weekday() + 1) % 7)
        return start, datetime.combine((start + timedelta(days=6)).date(), time.max)
    if budget.period is BudgetPeriod.YEARLY:
        return day_start.replace(month=1, day=1), datetime(now.year, 12, 31, 23, 59, 59, 999999)

    start = day_start.replace(day=1)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return start, next_month - timedelta(microseconds=1)


@dataclass
class BudgetProgress:
    budget: Budget
    start: datetime
    end: datetime
    total_spent: float

    @property
    def percentage(self) -> float:
        if self.budget.amount <= 0:
            return EXCEEDED_PERCENT if self.total_spent > 0 else 0.0
        return self.total_spent / self.budget.amount * 100

    @property
    def status(self) -> BudgetStatus:
        return classify(self.percentage)

    @property
    def overage(self) -> float:
        return self.total_spent - self.budget.amount

    def to_payload(self) -> dict[str, Any]:
        return {
            "budget_id": self.budget.id,
            "budget_name": self.budget.name,
            "budget_amount": self.budget.amount,
            "category_id": self.budget.category_id,
            "total_spent": self.total_spent,
            "remaining_amount": max(self.budget.amount - self.total_spent, 0.0),
            "overage": self.overage,
            "percentage": self.percentage,
            "status": self.status.value,
            "period": {"start": self.start.isoformat(), "end": self.end.isoformat()},
        }


class BudgetMonitor:
    """Re-alerts on every sweep while a budget stays at warning or above."""

    def __init__(
        self,
        store: LedgerStore,
        orchestrator: NotificationOrchestrator,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._clock = clock or Clock()

    async def progress(self, budget: Budget, now: datetime | None = None) -> BudgetProgress:
        start, end = period_window(budget, now or self._clock.now())
        spent = await self._store.sum_expenses(budget.user_id, start, end, budget.category_id)
        return BudgetProgress(budget=budget, start=start, end=end, total_spent=spent)

    async def sweep(self) -> list[BudgetProgress]:
        now = self._clock.now()
        alerted: list[BudgetProgress] = []

        for budget in await self._store.list_active_budgets(now):
            # One spend snapshot per budget; classification and payload share it.
            snapshot = await self.progress(budget, now)
            if snapshot.status is BudgetStatus.WITHIN_BUDGET:
                continue

            log.info(
                "budget_alert",
                budget_id=budget.id,
                user_id=budget.user_id,
                status=snapshot.status.value,
                percentage=round(snapshot.percentage, 2),
            )
            await self._orchestrator.fan_out(
                NotificationEvent(
                    type=WebhookEvent.BUDGET_ALERT,
                    user_id=budget.user_id,
                    payload=snapshot.to_payload(),
                )
            )
            alerted.append(snapshot)

        log.info("budget_sweep_complete", alerted=len(alerted))
        return alerted
