"""Event detectors run by the scheduler or invoked directly by the API."""

from .budgets import BudgetMonitor
from .goals import GoalMonitor
from .recurring import RecurringMaterializer
from .summary import MonthlySummaryReporter

__all__ = ["BudgetMonitor", "GoalMonitor", "MonthlySummaryReporter", "RecurringMaterializer"]
