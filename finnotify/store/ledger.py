"""Ledger and webhook subscription store with SQLite backend."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import aiosqlite

from finnotify.models import (
    Budget,
    BudgetPeriod,
    Category,
    FinancialGoal,
    RecurringInterval,
    Transaction,
    TransactionType,
    User,
    WebhookEvent,
    WebhookSubscription,
)
from finnotify.utils.logging import get_logger

log = get_logger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL DEFAULT '',
    notifications INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'EXPENSE'
);

CREATE TABLE IF NOT EXISTS transactions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    amount REAL NOT NULL,
    description TEXT NOT NULL,
    date TEXT NOT NULL,
    type TEXT NOT NULL,
    category_id INTEGER REFERENCES categories(id),
    recurring INTEGER NOT NULL DEFAULT 0,
    recurring_interval TEXT,
    template_id INTEGER REFERENCES transactions(id) ON DELETE SET NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_transactions_user_date ON transactions (user_id, date);
CREATE INDEX IF NOT EXISTS ix_transactions_template ON transactions (template_id);

CREATE TABLE IF NOT EXISTS budgets (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    amount REAL NOT NULL,
    period TEXT NOT NULL,
    start_date TEXT NOT NULL,
    end_date TEXT,
    category_id INTEGER REFERENCES categories(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS financial_goals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    target_amount REAL NOT NULL,
    current_amount REAL NOT NULL DEFAULT 0,
    target_date TEXT NOT NULL,
    category TEXT,
    description TEXT,
    notification_sent INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS webhooks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    url TEXT NOT NULL,
    secret TEXT NOT NULL,
    description TEXT,
    events TEXT NOT NULL DEFAULT '[]',
    is_active INTEGER NOT NULL DEFAULT 1,
    last_triggered_at TEXT,
    fail_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_webhooks_user ON webhooks (user_id, is_active);
"""


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _utcnow() -> str:
    return _ts(datetime.now(timezone.utc))


def _encode_events(events: Iterable[WebhookEvent]) -> str:
    return json.dumps(sorted(e.value for e in events))


def _user(row: aiosqlite.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        notifications=bool(row["notifications"]),
    )


def _transaction(row: aiosqlite.Row) -> Transaction:
    interval = row["recurring_interval"]
    return Transaction(
        id=row["id"],
        user_id=row["user_id"],
        amount=row["amount"],
        description=row["description"],
        date=datetime.fromisoformat(row["date"]),
        type=TransactionType(row["type"]),
        category_id=row["category_id"],
        recurring=bool(row["recurring"]),
        recurring_interval=RecurringInterval(interval) if interval else None,
        template_id=row["template_id"],
    )


def _budget(row: aiosqlite.Row) -> Budget:
    return Budget(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        amount=row["amount"],
        period=BudgetPeriod(row["period"]),
        start_date=datetime.fromisoformat(row["start_date"]),
        end_date=_parse_ts(row["end_date"]),
        category_id=row["category_id"],
    )


def _goal(row: aiosqlite.Row) -> FinancialGoal:
    return FinancialGoal(
        id=row["id"],
        user_id=row["user_id"],
        name=row["name"],
        target_amount=row["target_amount"],
        current_amount=row["current_amount"],
        target_date=datetime.fromisoformat(row["target_date"]),
        category=row["category"],
        description=row["description"],
        notification_sent=bool(row["notification_sent"]),
    )


def _subscription(row: aiosqlite.Row) -> WebhookSubscription:
    return WebhookSubscription(
        id=row["id"],
        user_id=row["user_id"],
        url=row["url"],
        secret=row["secret"],
        events=frozenset(WebhookEvent(e) for e in json.loads(row["events"])),
        description=row["description"],
        is_active=bool(row["is_active"]),
        last_triggered_at=_parse_ts(row["last_triggered_at"]),
        fail_count=row["fail_count"],
    )


class LedgerStore:
    """Async persistence collaborator for detectors and the dispatcher."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        # Serializes read-modify-write on goal amounts over the shared connection.
        self._goal_lock = asyncio.Lock()

    async def start(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self._db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.executescript(_SCHEMA)
        await self._db.commit()

    async def stop(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[aiosqlite.Row]:
        assert self._db is not None
        cursor = await self._db.execute(sql, params)
        return list(await cursor.fetchall())

    async def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> aiosqlite.Row | None:
        assert self._db is not None
        cursor = await self._db.execute(sql, params)
        return await cursor.fetchone()

    async def _insert(self, sql: str, params: tuple[Any, ...]) -> int:
        assert self._db is not None
        cursor = await self._db.execute(sql, params)
        await self._db.commit()
        return cursor.lastrowid or 0

    # ------------------------------------------------------------------
    # Users and categories
    # ------------------------------------------------------------------

    async def create_user(self, email: str, name: str = "", notifications: bool = True) -> User:
        user_id = await self._insert(
            "INSERT INTO users (email, name, notifications, created_at) VALUES (?, ?, ?, ?)",
            (email, name, int(notifications), _utcnow()),
        )
        return User(id=user_id, email=email, name=name, notifications=notifications)

    async def get_user(self, user_id: int) -> User | None:
        row = await self._fetchone("SELECT * FROM users WHERE id = ?", (user_id,))
        return _user(row) if row else None

    async def list_users(self, notifications_only: bool = False) -> list[User]:
        sql = "SELECT * FROM users"
        if notifications_only:
            sql += " WHERE notifications = 1"
        rows = await self._fetchall(sql + " ORDER BY id")
        return [_user(row) for row in rows]

    async def create_category(
        self, user_id: int, name: str, type: TransactionType = TransactionType.EXPENSE
    ) -> Category:
        category_id = await self._insert(
            "INSERT INTO categories (user_id, name, type) VALUES (?, ?, ?)",
            (user_id, name, type.value),
        )
        return Category(id=category_id, user_id=user_id, name=name, type=type)

    async def category_names(self, user_id: int) -> dict[int, str]:
        rows = await self._fetchall(
            "SELECT id, name FROM categories WHERE user_id = ?", (user_id,)
        )
        return {row["id"]: row["name"] for row in rows}

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        user_id: int,
        amount: float,
        description: str,
        date: datetime,
        type: TransactionType,
        category_id: int | None = None,
        recurring: bool = False,
        recurring_interval: RecurringInterval | None = None,
        template_id: int | None = None,
    ) -> Transaction:
        transaction_id = await self._insert(
            "INSERT INTO transactions (user_id, amount, description, date, type, category_id, "
            "recurring, recurring_interval, template_id, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                user_id,
                amount,
                description,
                _ts(date),
                type.value,
                category_id,
                int(recurring),
                recurring_interval.value if recurring_interval else None,
                template_id,
                _utcnow(),
            ),
        )
        return Transaction(
            id=transaction_id,
            user_id=user_id,
            amount=amount,
            description=description,
            date=date,
            type=type,
            category_id=category_id,
            recurring=recurring,
            recurring_interval=recurring_interval,
            template_id=template_id,
        )

    async def list_recurring_templates(self) -> list[Transaction]:
        """Recurring transactions that are not themselves materialized occurrences."""
        rows = await self._fetchall(
            "SELECT * FROM transactions WHERE recurring = 1 AND template_id IS NULL ORDER BY id"
        )
        return [_transaction(row) for row in rows]

    async def latest_occurrence(self, template_id: int) -> datetime | None:
        row = await self._fetchone(
            "SELECT MAX(date) AS latest FROM transactions WHERE template_id = ?",
            (template_id,),
        )
        return _parse_ts(row["latest"]) if row else None

    async def sum_expenses(
        self,
        user_id: int,
        start: datetime,
        end: datetime,
        category_id: int | None = None,
    ) -> float:
        sql = (
            "SELECT COALESCE(SUM(amount), 0) AS total FROM transactions "
            "WHERE user_id = ? AND type = ? AND date BETWEEN ? AND ?"
        )
        params: tuple[Any, ...] = (user_id, TransactionType.EXPENSE.value, _ts(start), _ts(end))
        if category_id is not None:
            sql += " AND category_id = ?"
            params += (category_id,)
        row = await self._fetchone(sql, params)
        return float(row["total"]) if row else 0.0

    async def list_transactions(
        self,
        user_id: int,
        start: datetime,
        end: datetime,
        type: TransactionType | None = None,
        description_contains: str | None = None,
    ) -> list[Transaction]:
        sql = "SELECT * FROM transactions WHERE user_id = ? AND date BETWEEN ? AND ?"
        params: tuple[Any, ...] = (user_id, _ts(start), _ts(end))
        if type is not None:
            sql += " AND type = ?"
            params += (type.value,)
        if description_contains:
            sql += " AND description LIKE ?"
            params += (f"%{description_contains}%",)
        rows = await self._fetchall(sql + " ORDER BY date", params)
        return [_transaction(row) for row in rows]

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    async def create_budget(
        self,
        user_id: int,
        name: str,
        amount: float,
        period: BudgetPeriod,
        start_date: datetime,
        end_date: datetime | None = None,
        category_id: int | None = None,
    ) -> Budget:
        budget_id = await self._insert(
            "INSERT INTO budgets (user_id, name, amount, period, start_date, end_date, category_id) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                user_id,
                name,
                amount,
                period.value,
                _ts(start_date),
                _ts(end_date) if end_date else None,
                category_id,
            ),
        )
        return Budget(
            id=budget_id,
            user_id=user_id,
            name=name,
            amount=amount,
            period=period,
            start_date=start_date,
            end_date=end_date,
            category_id=category_id,
        )

    async def list_active_budgets(self, now: datetime) -> list[Budget]:
        rows = await self._fetchall(
            "SELECT * FROM budgets WHERE start_date <= ? AND (end_date IS NULL OR end_date > ?) "
            "ORDER BY id",
            (_ts(now), _ts(now)),
        )
        return [_budget(row) for row in rows]

    # ------------------------------------------------------------------
    # Financial goals
    # ------------------------------------------------------------------

    async def create_goal(
        self,
        user_id: int,
        name: str,
        target_amount: float,
        target_date: datetime,
        current_amount: float = 0.0,
        category: str | None = None,
        description: str | None = None,
    ) -> FinancialGoal:
        goal_id = await self._insert(
            "INSERT INTO financial_goals (user_id, name, target_amount, current_amount, "
            "target_date, category, description) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (user_id, name, target_amount, current_amount, _ts(target_date), category, description),
        )
        return FinancialGoal(
            id=goal_id,
            user_id=user_id,
            name=name,
            target_amount=target_amount,
            current_amount=current_amount,
            target_date=target_date,
            category=category,
            description=description,
        )

    async def get_goal(self, goal_id: int) -> FinancialGoal | None:
        row = await self._fetchone("SELECT * FROM financial_goals WHERE id = ?", (goal_id,))
        return _goal(row) if row else None

    async def add_to_goal(
        self, goal_id: int, delta: float
    ) -> tuple[FinancialGoal, float] | None:
        """Atomically add delta to a goal's current amount.

        Returns the updated goal and the amount it held before the write.
        Falling back below target clears ``notification_sent`` so the next
        crossing counts as a fresh transition.
        """
        assert self._db is not None
        async with self._goal_lock:
            before = await self._fetchone(
                "SELECT current_amount FROM financial_goals WHERE id = ?", (goal_id,)
            )
            if before is None:
                return None
            cursor = await self._db.execute(
                "UPDATE financial_goals SET "
                "current_amount = current_amount + ?, "
                "notification_sent = CASE WHEN current_amount + ? < target_amount "
                "THEN 0 ELSE notification_sent END "
                "WHERE id = ? RETURNING *",
                (delta, delta, goal_id),
            )
            row = await cursor.fetchone()
            await self._db.commit()
        if row is None:
            return None
        return _goal(row), before["current_amount"]

    async def claim_goal_notification(self, goal_id: int) -> bool:
        """Set ``notification_sent`` if unset and the goal is achieved.

        Returns True for exactly one caller per achievement transition.
        """
        assert self._db is not None
        cursor = await self._db.execute(
            "UPDATE financial_goals SET notification_sent = 1 "
            "WHERE id = ? AND notification_sent = 0 AND current_amount >= target_amount",
            (goal_id,),
        )
        await self._db.commit()
        return cursor.rowcount == 1

    async def list_unnotified_achieved_goals(self) -> list[FinancialGoal]:
        rows = await self._fetchall(
            "SELECT * FROM financial_goals "
            "WHERE notification_sent = 0 AND current_amount >= target_amount ORDER BY id"
        )
        return [_goal(row) for row in rows]

    # ------------------------------------------------------------------
    # Webhook subscriptions
    # ------------------------------------------------------------------

    async def create_subscription(
        self,
        user_id: int,
        url: str,
        secret: str,
        events: Iterable[WebhookEvent],
        description: str | None = None,
    ) -> WebhookSubscription:
        now = _utcnow()
        event_set = frozenset(events)
        subscription_id = await self._insert(
            "INSERT INTO webhooks (user_id, url, secret, description, events, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (user_id, url, secret, description, _encode_events(event_set), now, now),
        )
        return WebhookSubscription(
            id=subscription_id,
            user_id=user_id,
            url=url,
            secret=secret,
            events=event_set,
            description=description,
        )

    async def get_subscription(
        self, subscription_id: int, user_id: int | None = None
    ) -> WebhookSubscription | None:
        sql = "SELECT * FROM webhooks WHERE id = ?"
        params: tuple[Any, ...] = (subscription_id,)
        if user_id is not None:
            sql += " AND user_id = ?"
            params += (user_id,)
        row = await self._fetchone(sql, params)
        return _subscription(row) if row else None

    async def update_subscription(
        self,
        subscription_id: int,
        user_id: int,
        *,
        url: str | None = None,
        description: str | None = None,
        events: Iterable[WebhookEvent] | None = None,
        is_active: bool | None = None,
        secret: str | None = None,
        reset_failures: bool = False,
    ) -> WebhookSubscription | None:
        assert self._db is not None
        fields: list[str] = []
        params: list[Any] = []
        if url is not None:
            fields.append("url = ?")
            params.append(url)
        if description is not None:
            fields.append("description = ?")
            params.append(description)
        if events is not None:
            fields.append("events = ?")
            params.append(_encode_events(events))
        if is_active is not None:
            fields.append("is_active = ?")
            params.append(int(is_active))
        if secret is not None:
            fields.append("secret = ?")
            params.append(secret)
        if reset_failures:
            fields.append("fail_count = 0")
        fields.append("updated_at = ?")
        params.append(_utcnow())

        cursor = await self._db.execute(
            f"UPDATE webhooks SET {', '.join(fields)} WHERE id = ? AND user_id = ?",
            (*params, subscription_id, user_id),
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            return None
        return await self.get_subscription(subscription_id, user_id)

    async def list_active_subscriptions(self, user_id: int) -> list[WebhookSubscription]:
        rows = await self._fetchall(
            "SELECT * FROM webhooks WHERE user_id = ? AND is_active = 1 ORDER BY id",
            (user_id,),
        )
        return [_subscription(row) for row in rows]

    async def find_subscriptions_containing(
        self, user_id: int, events: Iterable[WebhookEvent]
    ) -> list[WebhookSubscription]:
        """Active subscriptions whose event array contains any of ``events``.

        EXISTS over ``json_each`` yields each subscription row at most once.
        """
        wanted = sorted({e.value for e in events})
        if not wanted:
            return []
        placeholders = ", ".join("?" for _ in wanted)
        rows = await self._fetchall(
            "SELECT * FROM webhooks w WHERE w.user_id = ? AND w.is_active = 1 "
            f"AND EXISTS (SELECT 1 FROM json_each(w.events) e WHERE e.value IN ({placeholders})) "
            "ORDER BY w.id",
            (user_id, *wanted),
        )
        return [_subscription(row) for row in rows]

    async def record_delivery_success(self, subscription_id: int, at: datetime) -> None:
        assert self._db is not None
        await self._db.execute(
            "UPDATE webhooks SET fail_count = 0, last_triggered_at = ?, updated_at = ? WHERE id = ?",
            (_ts(at), _utcnow(), subscription_id),
        )
        await self._db.commit()

    async def record_delivery_failure(
        self, subscription_id: int, threshold: int
    ) -> tuple[int, bool]:
        """Count one failed delivery.

        The count saturates at ``threshold``. Returns the new count and
        whether this call flipped the subscription to inactive.
        """
        assert self._db is not None
        await self._db.execute(
            "UPDATE webhooks SET fail_count = MIN(fail_count + 1, ?), updated_at = ? WHERE id = ?",
            (threshold, _utcnow(), subscription_id),
        )
        cursor = await self._db.execute(
            "UPDATE webhooks SET is_active = 0 WHERE id = ? AND is_active = 1 AND fail_count >= ?",
            (subscription_id, threshold),
        )
        disabled = cursor.rowcount == 1
        row = await self._fetchone(
            "SELECT fail_count FROM webhooks WHERE id = ?", (subscription_id,)
        )
        await self._db.commit()
        return (row["fail_count"] if row else 0), disabled
