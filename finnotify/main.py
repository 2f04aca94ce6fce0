"""finnotify entry point: wires the notification core together and runs it."""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Any

import click

from finnotify import __version__
from finnotify.api.server import ApiServer
from finnotify.api.tokens import issue_token
from finnotify.config import Settings, load_settings
from finnotify.core.scheduler import FinancialScheduler
from finnotify.detectors.budgets import BudgetMonitor
from finnotify.detectors.goals import GoalMonitor
from finnotify.detectors.recurring import RecurringMaterializer
from finnotify.detectors.summary import MonthlySummaryReporter
from finnotify.models import WebhookEvent
from finnotify.notify.email import EmailNotifier
from finnotify.notify.orchestrator import NotificationOrchestrator
from finnotify.realtime.channel import RealtimeChannel
from finnotify.store.ledger import LedgerStore
from finnotify.utils.clock import Clock
from finnotify.utils.logging import get_logger, setup_logging
from finnotify.webhooks.dispatcher import DeliveryResult, WebhookDispatcher
from finnotify.webhooks.matcher import SubscriptionMatcher

log = get_logger(__name__)

SWEEPS = ("recurring", "budgets", "goals", "summary")


class App:
    """Process-scoped service object.

    Built once at startup and handed to handlers and the scheduler; owns
    the connection registry, HTTP client and store, and releases them in
    ``stop``.
    """

    def __init__(self, settings: Settings, clock: Clock | None = None) -> None:
        self.settings = settings
        self.clock = clock or Clock()

        self.store = LedgerStore(settings.get_db_path())
        self.realtime = RealtimeChannel()
        self.email = EmailNotifier(settings.email)
        self.matcher = SubscriptionMatcher(self.store, settings.webhooks.match_strategy)
        self.dispatcher = WebhookDispatcher(settings.webhooks, self.store, self.matcher)
        self.orchestrator = NotificationOrchestrator(
            self.store, self.dispatcher, self.realtime, self.email
        )

        # Detectors
        self.recurring = RecurringMaterializer(self.store, self.clock)
        self.budgets = BudgetMonitor(self.store, self.orchestrator, self.clock)
        self.goals = GoalMonitor(self.store, self.orchestrator, self.realtime, self.clock)
        self.summary = MonthlySummaryReporter(self.store, self.email, self.clock)

        self.scheduler = FinancialScheduler(
            settings.scheduler,
            self.recurring,
            self.budgets,
            self.goals,
            self.summary,
            self.clock,
        )
        self.api = ApiServer(
            settings.realtime, self.realtime, self.scheduler, self.goals, self.dispatcher
        )
        self._started = False

    async def start(self, serve: bool = True, schedule: bool = True) -> None:
        log.info("finnotify_starting", version=__version__, db=str(self.settings.get_db_path()))
        await self.store.start()
        await self.dispatcher.start()

        if schedule and self.settings.scheduler.enabled:
            await self.scheduler.start()
        if serve and self.settings.realtime.enabled:
            await self.api.start()

        self._started = True
        log.info("finnotify_ready")

    async def stop(self) -> None:
        if not self._started:
            return
        log.info("finnotify_stopping")
        await self.scheduler.stop()
        await self.api.stop()
        await self.dispatcher.stop()
        await self.store.stop()
        self._started = False
        log.info("finnotify_stopped")

    async def trigger_webhook(
        self, event: WebhookEvent, user_id: int, payload: dict[str, Any]
    ) -> list[DeliveryResult]:
        """Announce a completed state change to the owner's subscriptions."""
        return await self.dispatcher.trigger(event, user_id, payload)


async def run(settings: Settings) -> None:
    app = App(settings)

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        log.info("shutdown_signal")
        stop_event.set()

    if sys.platform != "win32":
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _signal_handler)

    await app.start()

    try:
        if sys.platform == "win32":
            while not stop_event.is_set():
                await asyncio.sleep(1)
        else:
            await stop_event.wait()
    except KeyboardInterrupt:
        pass
    finally:
        await app.stop()


async def run_sweep(settings: Settings, kind: str) -> Any:
    app = App(settings)
    await app.start(serve=False, schedule=False)
    try:
        return await app.scheduler.trigger(kind)
    finally:
        await app.stop()


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config YAML file")
@click.option("--log-level", default=None, help="Log level (DEBUG, INFO, WARNING, ERROR)")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """finnotify: financial event detection and notification delivery."""
    settings = load_settings(config_path)
    if log_level:
        settings.log_level = log_level
    setup_logging(level=settings.log_level, json_output=settings.log_json)
    ctx.obj = settings


@cli.command("run")
@click.pass_obj
def run_command(settings: Settings) -> None:
    """Start the scheduler and the realtime/API server."""
    asyncio.run(run(settings))


@cli.command("sweep")
@click.argument("kind", type=click.Choice(SWEEPS))
@click.pass_obj
def sweep_command(settings: Settings, kind: str) -> None:
    """Run one detector sweep now and exit."""
    result = asyncio.run(run_sweep(settings, kind))
    count = len(result) if isinstance(result, list) else result
    click.echo(f"{kind} sweep complete: {count}")


@cli.command("token")
@click.argument("user_id", type=int)
@click.pass_obj
def token_command(settings: Settings, user_id: int) -> None:
    """Print a realtime/API token for USER_ID."""
    if not settings.realtime.token_secret:
        raise click.ClickException("realtime.token_secret is not configured")
    click.echo(issue_token(user_id, settings.realtime.token_secret, settings.realtime.token_ttl))


if __name__ == "__main__":
    cli()
