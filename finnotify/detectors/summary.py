"""Previous-month income/expense summaries for opted-in users."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any

from finnotify.models import Transaction, TransactionType, User
from finnotify.notify.email import EmailNotifier
from finnotify.store.ledger import LedgerStore
from finnotify.utils.clock import Clock
from finnotify.utils.logging import get_logger

log = get_logger(__name__)

TOP_EXPENSES = 5


def previous_month(now: datetime) -> tuple[datetime, datetime]:
    end = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start = (end - timedelta(days=1)).replace(day=1)
    return start, end - timedelta(microseconds=1)


def summarize(transactions: list[Transaction], category_names: dict[int, str]) -> dict[str, Any]:
    income = 0.0
    expenses = 0.0
    by_category: dict[str, float] = defaultdict(float)

    for t in transactions:
        if t.type is TransactionType.INCOME:
            income += t.amount
        elif t.type is TransactionType.EXPENSE:
            expenses += t.amount
            name = category_names.get(t.category_id or 0, "Uncategorized")
            by_category[name] += t.amount

    net = income - expenses
    top = sorted(by_category.items(), key=lambda item: item[1], reverse=True)[:TOP_EXPENSES]
    return {
        "total_income": income,
        "total_expenses": expenses,
        "net_savings": net,
        "savings_rate": net / income * 100 if income > 0 else 0.0,
        "top_expenses": [{"name": name, "amount": amount} for name, amount in top],
        "transaction_count": len(transactions),
    }


class MonthlySummaryReporter:
    def __init__(
        self,
        store: LedgerStore,
        email: EmailNotifier,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._email = email
        self._clock = clock or Clock()

    async def report_for(self, user: User, now: datetime) -> dict[str, Any]:
        start, end = previous_month(now)
        transactions = await self._store.list_transactions(user.id, start, end)
        summary = summarize(transactions, await self._store.category_names(user.id))
        await self._email.send_monthly_summary(
            user.id, user.email, start.strftime("%B"), str(start.year), summary
        )
        return summary

    async def sweep(self) -> int:
        now = self._clock.now()
        sent = 0
        for user in await self._store.list_users(notifications_only=True):
            try:
                await self.report_for(user, now)
                sent += 1
            except Exception:
                log.exception("monthly_summary_failed", user_id=user.id)
        log.info("monthly_summary_sweep_complete", sent=sent)
        return sent
