"""Materialize recurring transactions whose next occurrence has come due."""

from __future__ import annotations

from datetime import datetime, timedelta

from finnotify.models import RecurringInterval, Transaction
from finnotify.store.ledger import LedgerStore
from finnotify.utils.clock import Clock
from finnotify.utils.logging import get_logger

log = get_logger(__name__)

_WEEK = timedelta(days=7)
_FORTNIGHT = timedelta(days=14)


def is_due(interval: RecurringInterval | None, reference: datetime, now: datetime) -> bool:
    """Whether ``now`` has crossed the next occurrence boundary after ``reference``."""
    if interval is RecurringInterval.DAILY:
        return now.date() != reference.date()
    if interval is RecurringInterval.WEEKLY:
        return (now - reference) // _WEEK >= 1
    if interval is RecurringInterval.BIWEEKLY:
        return (now - reference) // _FORTNIGHT >= 1
    if interval is RecurringInterval.MONTHLY:
        return (now.year, now.month) != (reference.year, reference.month)
    if interval is RecurringInterval.QUARTERLY:
        months = (now.month - reference.month) + 12 * (now.year - reference.year)
        return months >= 3
    if interval is RecurringInterval.YEARLY:
        return now.year != reference.year
    return False


class RecurringMaterializer:
    """Creates one new transaction per due template.

    The reference date is the latest occurrence in a template's series, so a
    template is materialized once per period. Templates themselves are never
    modified.
    """

    def __init__(self, store: LedgerStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or Clock()

    async def reference_date(self, template: Transaction) -> datetime:
        latest = await self._store.latest_occurrence(template.id)
        if latest is None or latest < template.date:
            return template.date
        return latest

    async def sweep(self) -> list[Transaction]:
        now = self._clock.now()
        created: list[Transaction] = []

        for template in await self._store.list_recurring_templates():
            reference = await self.reference_date(template)
            if not is_due(template.recurring_interval, reference, now):
                continue

            occurrence = await self._store.create_transaction(
                user_id=template.user_id,
                amount=template.amount,
                description=template.description,
                date=now,
                type=template.type,
                category_id=template.category_id,
                recurring=template.recurring,
                recurring_interval=template.recurring_interval,
                template_id=template.id,
            )
            created.append(occurrence)
            log.info(
                "recurring_transaction_created",
                template_id=template.id,
                transaction_id=occurrence.id,
                user_id=template.user_id,
                description=template.description,
            )

        log.info("recurring_sweep_complete", created=len(created))
        return created
