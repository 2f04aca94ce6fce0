"""HTTP and WebSocket surface using aiohttp."""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from aiohttp import WSMsgType, web

from finnotify.api.tokens import validate_admin_token, verify_token
from finnotify.config import RealtimeConfig
from finnotify.core.scheduler import FinancialScheduler
from finnotify.detectors.goals import GoalMonitor, goal_payload
from finnotify.errors import NotFoundError, ValidationError
from finnotify.realtime.channel import RealtimeChannel
from finnotify.utils.logging import get_logger
from finnotify.webhooks.dispatcher import WebhookDispatcher

log = get_logger(__name__)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except NotFoundError as exc:
        return web.json_response({"error": str(exc)}, status=404)
    except ValidationError as exc:
        return web.json_response({"error": str(exc)}, status=400)


class ApiServer:
    """Realtime socket, operator sweep triggers and goal/webhook actions."""

    def __init__(
        self,
        config: RealtimeConfig,
        realtime: RealtimeChannel,
        scheduler: FinancialScheduler,
        goals: GoalMonitor,
        dispatcher: WebhookDispatcher,
    ) -> None:
        self._config = config
        self._realtime = realtime
        self._scheduler = scheduler
        self._goals = goals
        self._dispatcher = dispatcher
        self._runner: web.AppRunner | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if not self._config.token_secret:
            log.warning(
                "api_no_token_secret",
                msg="No token secret configured; all user connections will be rejected.",
            )
        app = self.build_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._config.bind, self._config.port)
        await site.start()
        log.info("api_server_started", bind=self._config.bind, port=self._config.port)

    async def stop(self) -> None:
        await self._realtime.close_all()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        log.info("api_server_stopped")

    # ------------------------------------------------------------------
    # App construction
    # ------------------------------------------------------------------

    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[error_middleware])
        app.router.add_get("/ws", self._handle_socket)
        app.router.add_post("/sweeps/{kind}", self._handle_sweep)
        app.router.add_get("/goals/{goal_id:\\d+}/progress", self._handle_goal_progress)
        app.router.add_post("/goals/{goal_id:\\d+}/progress", self._handle_goal_update)
        app.router.add_post("/webhooks/{webhook_id:\\d+}/test", self._handle_webhook_test)
        app.router.add_post("/webhooks/{webhook_id:\\d+}/secret", self._handle_webhook_secret)
        app.router.add_post(
            "/webhooks/{webhook_id:\\d+}/reactivate", self._handle_webhook_reactivate
        )
        return app

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _owner(self, request: web.Request) -> int:
        token = request.query.get("token", "")
        auth = request.headers.get("Authorization", "")
        if not token and auth.startswith("Bearer "):
            token = auth.removeprefix("Bearer ")
        user_id = verify_token(token, self._config.token_secret)
        if user_id is None:
            raise web.HTTPUnauthorized(text="Invalid token")
        return user_id

    def _require_admin(self, request: web.Request) -> None:
        provided = request.headers.get("X-Admin-Token", "")
        if not validate_admin_token(provided, self._config.admin_token):
            raise web.HTTPUnauthorized(text="Invalid admin token")

    @staticmethod
    async def _json_body(request: web.Request) -> dict[str, Any]:
        try:
            body = await request.json()
        except ValueError:
            raise ValidationError("Invalid JSON") from None
        if not isinstance(body, dict):
            raise ValidationError("Expected a JSON object")
        return body

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def _handle_socket(self, request: web.Request) -> web.WebSocketResponse:
        user_id = self._owner(request)
        ws = web.WebSocketResponse(heartbeat=30.0)
        await ws.prepare(request)

        connection_id = self._realtime.attach(user_id, ws)
        try:
            async for msg in ws:
                if msg.type == WSMsgType.TEXT and msg.data == "ping":
                    await ws.send_str("pong")
                elif msg.type == WSMsgType.ERROR:
                    log.warning("realtime_socket_error", user_id=user_id, error=str(ws.exception()))
                    break
        finally:
            self._realtime.detach(user_id, connection_id)
        return ws

    # ------------------------------------------------------------------
    # Operator sweeps
    # ------------------------------------------------------------------

    async def _handle_sweep(self, request: web.Request) -> web.Response:
        self._require_admin(request)
        kind = request.match_info["kind"]
        try:
            result = await self._scheduler.trigger(kind)
        except ValidationError:
            raise
        except Exception:
            return web.json_response({"error": f"{kind} sweep failed"}, status=500)
        count = len(result) if isinstance(result, list) else result
        return web.json_response({"sweep": kind, "count": count})

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------

    async def _handle_goal_progress(self, request: web.Request) -> web.Response:
        user_id = self._owner(request)
        goal_id = int(request.match_info["goal_id"])
        progress = await self._goals.progress(goal_id, user_id=user_id)
        return web.json_response({"goal_id": goal_id, "progress": progress.to_payload()})

    async def _handle_goal_update(self, request: web.Request) -> web.Response:
        user_id = self._owner(request)
        goal_id = int(request.match_info["goal_id"])
        body = await self._json_body(request)
        amount = body.get("amount")
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValidationError("amount must be a number")

        update = await self._goals.apply_delta(goal_id, float(amount), user_id=user_id)
        return web.json_response(
            {
                "goal": goal_payload(update.goal),
                "progress": update.progress.to_payload(),
                "was_achieved": update.was_achieved,
            }
        )

    # ------------------------------------------------------------------
    # Webhook subscriptions
    # ------------------------------------------------------------------

    async def _handle_webhook_test(self, request: web.Request) -> web.Response:
        user_id = self._owner(request)
        webhook_id = int(request.match_info["webhook_id"])
        success = await self._dispatcher.test_subscription(webhook_id, user_id)
        return web.json_response({"id": webhook_id, "success": success})

    async def _handle_webhook_secret(self, request: web.Request) -> web.Response:
        user_id = self._owner(request)
        webhook_id = int(request.match_info["webhook_id"])
        subscription = await self._dispatcher.rotate_secret(webhook_id, user_id)
        return web.json_response({"id": subscription.id, "secret": subscription.secret})

    async def _handle_webhook_reactivate(self, request: web.Request) -> web.Response:
        user_id = self._owner(request)
        webhook_id = int(request.match_info["webhook_id"])
        subscription = await self._dispatcher.reactivate(webhook_id, user_id)
        return web.json_response(
            {
                "id": subscription.id,
                "is_active": subscription.is_active,
                "fail_count": subscription.fail_count,
            }
        )
