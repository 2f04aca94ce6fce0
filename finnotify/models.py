"""Typed ledger, subscription and event models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class WebhookEvent(str, Enum):
    TRANSACTION_CREATED = "transaction.created"
    TRANSACTION_UPDATED = "transaction.updated"
    TRANSACTION_DELETED = "transaction.deleted"
    BUDGET_ALERT = "budget.alert"
    GOAL_ACHIEVED = "goal.achieved"
    ALL = "*"


class TransactionType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    TRANSFER = "TRANSFER"


class RecurringInterval(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class BudgetPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BudgetStatus(str, Enum):
    WITHIN_BUDGET = "within_budget"
    WARNING = "warning"
    EXCEEDED = "exceeded"


# ---------------------------------------------------------------------------
# Ledger entities
# ---------------------------------------------------------------------------

@dataclass
class User:
    id: int
    email: str
    name: str = ""
    notifications: bool = True


@dataclass
class Category:
    id: int
    user_id: int
    name: str
    type: TransactionType = TransactionType.EXPENSE


@dataclass
class Transaction:
    id: int
    user_id: int
    amount: float
    description: str
    date: datetime
    type: TransactionType
    category_id: int | None = None
    recurring: bool = False
    recurring_interval: RecurringInterval | None = None
    template_id: int | None = None


@dataclass
class Budget:
    id: int
    user_id: int
    name: str
    amount: float
    period: BudgetPeriod
    start_date: datetime
    end_date: datetime | None = None
    category_id: int | None = None


@dataclass
class FinancialGoal:
    id: int
    user_id: int
    name: str
    target_amount: float
    current_amount: float
    target_date: datetime
    category: str | None = None
    description: str | None = None
    notification_sent: bool = False

    @property
    def is_achieved(self) -> bool:
        return self.current_amount >= self.target_amount


# ---------------------------------------------------------------------------
# Webhooks and notifications
# ---------------------------------------------------------------------------

@dataclass
class WebhookSubscription:
    id: int
    user_id: int
    url: str
    secret: str
    events: frozenset[WebhookEvent]
    description: str | None = None
    is_active: bool = True
    last_triggered_at: datetime | None = None
    fail_count: int = 0

    def wants(self, event: WebhookEvent) -> bool:
        return event in self.events or WebhookEvent.ALL in self.events


@dataclass
class NotificationEvent:
    type: WebhookEvent
    user_id: int
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
