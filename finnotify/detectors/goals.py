"""Goal progress and edge-triggered achievement notifications."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from dateutil.relativedelta import relativedelta

from finnotify.errors import NotFoundError, ValidationError
from finnotify.models import FinancialGoal, NotificationEvent, TransactionType, WebhookEvent
from finnotify.notify.orchestrator import NotificationOrchestrator
from finnotify.realtime.channel import RealtimeChannel
from finnotify.store.ledger import LedgerStore
from finnotify.utils.clock import Clock
from finnotify.utils.logging import get_logger

log = get_logger(__name__)

ESTIMATE_MONTHS = 3


@dataclass
class GoalProgress:
    current_amount: float
    target_amount: float
    percentage: float
    remaining: float
    is_achieved: bool
    estimated_completion: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "current_amount": self.current_amount,
            "target_amount": self.target_amount,
            "percentage": self.percentage,
            "remaining": self.remaining,
            "is_achieved": self.is_achieved,
            "estimated_completion": (
                self.estimated_completion.isoformat() if self.estimated_completion else None
            ),
        }


@dataclass
class GoalUpdate:
    goal: FinancialGoal
    progress: GoalProgress
    was_achieved: bool


def compute_progress(goal: FinancialGoal) -> GoalProgress:
    current, target = goal.current_amount, goal.target_amount
    achieved = current >= target
    if target == 0:
        percentage = 100.0 if achieved else 0.0
    else:
        percentage = current / target * 100
    return GoalProgress(
        current_amount=current,
        target_amount=target,
        percentage=percentage,
        remaining=max(target - current, 0.0),
        is_achieved=achieved,
    )


def goal_payload(goal: FinancialGoal) -> dict[str, Any]:
    return {
        "goal_id": goal.id,
        "goal_name": goal.name,
        "target_amount": goal.target_amount,
        "current_amount": goal.current_amount,
        "target_date": goal.target_date.isoformat(),
        "category": goal.category,
    }


class GoalMonitor:
    def __init__(
        self,
        store: LedgerStore,
        orchestrator: NotificationOrchestrator,
        realtime: RealtimeChannel | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._realtime = realtime
        self._clock = clock or Clock()

    async def _get(self, goal_id: int, user_id: int | None = None) -> FinancialGoal:
        goal = await self._store.get_goal(goal_id)
        if goal is None or (user_id is not None and goal.user_id != user_id):
            raise NotFoundError("Financial goal", goal_id)
        return goal

    async def progress(self, goal_id: int, user_id: int | None = None) -> GoalProgress:
        goal = await self._get(goal_id, user_id)
        return await self.progress_for(goal)

    async def progress_for(self, goal: FinancialGoal) -> GoalProgress:
        progress = compute_progress(goal)
        if not progress.is_achieved and progress.percentage > 0:
            progress.estimated_completion = await self._estimate_completion(goal, progress.remaining)
        return progress

    async def _estimate_completion(self, goal: FinancialGoal, remaining: float) -> datetime | None:
        """Best-effort estimate from the trailing average contribution; None if unknown."""
        now = self._clock.now()
        contributions = await self._store.list_transactions(
            goal.user_id,
            now - relativedelta(months=ESTIMATE_MONTHS),
            now,
            type=TransactionType.EXPENSE,
            description_contains=goal.name,
        )
        average = sum(t.amount for t in contributions) / ESTIMATE_MONTHS
        if average <= 0:
            return None
        return now + relativedelta(months=math.ceil(remaining / average))

    async def apply_delta(
        self, goal_id: int, delta: float, user_id: int | None = None
    ) -> GoalUpdate:
        """Add ``delta`` to a goal and notify once if it just became achieved."""
        if not math.isfinite(delta):
            raise ValidationError("Goal contribution must be a finite number")
        if user_id is not None:
            await self._get(goal_id, user_id)

        updated = await self._store.add_to_goal(goal_id, delta)
        if updated is None:
            raise NotFoundError("Financial goal", goal_id)
        goal, previous_amount = updated

        achieved_before = previous_amount >= goal.target_amount
        was_achieved = False
        if goal.is_achieved and not achieved_before:
            # The goal update is already committed; the claim guards double-fire
            # against a concurrent sweep.
            was_achieved = await self._store.claim_goal_notification(goal.id)
            if was_achieved:
                goal.notification_sent = True
                await self._notify_achieved(goal)

        progress = await self.progress_for(goal)
        if self._realtime is not None:
            try:
                await self._realtime.emit_goal_progress(
                    goal.user_id, {"goal_id": goal.id, **progress.to_payload()}
                )
            except Exception:
                log.exception("goal_progress_push_failed", goal_id=goal.id)

        return GoalUpdate(goal=goal, progress=progress, was_achieved=was_achieved)

    async def sweep(self) -> list[FinancialGoal]:
        """Notify achieved goals that no caller has announced yet."""
        notified: list[FinancialGoal] = []
        for goal in await self._store.list_unnotified_achieved_goals():
            if not await self._store.claim_goal_notification(goal.id):
                continue
            goal.notification_sent = True
            await self._notify_achieved(goal)
            notified.append(goal)

        log.info("goal_sweep_complete", notified=len(notified))
        return notified

    async def _notify_achieved(self, goal: FinancialGoal) -> None:
        log.info("goal_achieved", goal_id=goal.id, user_id=goal.user_id)
        await self._orchestrator.fan_out(
            NotificationEvent(
                type=WebhookEvent.GOAL_ACHIEVED,
                user_id=goal.user_id,
                payload=goal_payload(goal),
            )
        )
