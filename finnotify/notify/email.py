"""Email notifier stub: renders messages and logs them instead of sending."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from finnotify.config import EmailConfig
from finnotify.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class EmailMessage:
    to: str
    subject: str
    body: str


class EmailNotifier:
    def __init__(self, config: EmailConfig) -> None:
        self._config = config
        self.outbox: list[EmailMessage] = []

    async def _send(self, message: EmailMessage) -> None:
        if not self._config.enabled:
            return
        self.outbox.append(message)
        log.info(
            "email_sent",
            sender=self._config.sender,
            to=message.to,
            subject=message.subject,
        )

    async def send_budget_alert(
        self, user_id: int, email: str, budget_name: str, overage: float
    ) -> None:
        if overage > 0:
            body = f"You have exceeded your '{budget_name}' budget by {overage:.2f}."
        else:
            body = (
                f"You are approaching the limit of your '{budget_name}' budget "
                f"({-overage:.2f} remaining)."
            )
        await self._send(EmailMessage(email, f"Budget alert: {budget_name}", body))
        log.debug("budget_alert_email", user_id=user_id, budget=budget_name)

    async def send_goal_achieved(
        self, user_id: int, email: str, goal_name: str, amount: float
    ) -> None:
        await self._send(
            EmailMessage(
                email,
                f"Goal achieved: {goal_name}",
                f"Congratulations! You reached your '{goal_name}' goal with {amount:.2f} saved.",
            )
        )
        log.debug("goal_achieved_email", user_id=user_id, goal=goal_name)

    async def send_monthly_summary(
        self, user_id: int, email: str, month: str, year: str, summary: dict[str, Any]
    ) -> None:
        lines = [
            f"Income: {summary['total_income']:.2f}",
            f"Expenses: {summary['total_expenses']:.2f}",
            f"Net savings: {summary['net_savings']:.2f}",
            f"Savings rate: {summary['savings_rate']:.1f}%",
        ]
        for item in summary.get("top_expenses", []):
            lines.append(f"  {item['name']}: {item['amount']:.2f}")
        lines.append(f"Report: {self._config.client_url}/reports/{year}/{month}")
        await self._send(
            EmailMessage(email, f"Your {month} {year} summary", "\n".join(lines))
        )
        log.debug("monthly_summary_email", user_id=user_id, month=month, year=year)
