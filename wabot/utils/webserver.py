"""
wabot/utils/webserver.py
HTTP surface of the bot: health, scheduled task API and autoposter webhooks
"""

import json
import logging
import time
from datetime import timedelta
from typing import Optional

from aiohttp import web

from ..errors import BotError, InvalidInput, NotFound
from ..services.logging_service import LogLevel
from .timeutil import humanize_delta

logger = logging.getLogger(__name__)

SECRET_HEADER = "X-Webhook-Secret"


class WebServer:
    def __init__(self, bot, host: str = "0.0.0.0", port: int = 3000):
        self.bot = bot
        self.host = host
        self.port = port
        self.app = web.Application()
        self.request_count = 0
        self.started_at = time.time()
        self._runner: Optional[web.AppRunner] = None
        self.setup_routes()

    def setup_routes(self):
        """Setup web server routes"""
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/api/health-detailed", self.handle_health_detailed)
        self.app.router.add_get("/api/scheduled-tasks", self.handle_scheduled_tasks)
        self.app.router.add_post("/api/trigger-scheduled-task/{task_key}", self.handle_trigger_task)
        self.app.router.add_post("/webhook/xposter/add", self.handle_xposter_add)
        self.app.router.add_post("/webhook/xposter/config", self.handle_xposter_config)
        self.app.router.add_post("/webhook/xposter/test", self.handle_xposter_test)
        self.app.router.add_get("/webhook/xposter/list", self.handle_xposter_list)

    # ---------- health & tasks ----------

    async def handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint"""
        self.request_count += 1
        return web.json_response({
            "status": "healthy",
            "service": self.bot.config.bot_name,
            "uptime": humanize_delta(timedelta(seconds=time.time() - self.started_at)),
            "requests_served": self.request_count,
        })

    async def handle_health_detailed(self, request: web.Request) -> web.Response:
        self.request_count += 1
        report = await self.bot.health.check_now()
        return web.json_response({
            "status": "healthy" if report["ok"] else "degraded",
            "uptime": report["uptime"],
            "store": report["store"],
            "problems": report["problems"],
            "plugins": self.bot.registry.get_stats(),
            "scheduler": self.bot.scheduler.health_report(),
            "router": dict(self.bot.router.stats),
        })

    async def handle_scheduled_tasks(self, request: web.Request) -> web.Response:
        self.request_count += 1
        tasks = self.bot.scheduler.status()
        return web.json_response({"count": len(tasks), "tasks": tasks})

    async def handle_trigger_task(self, request: web.Request) -> web.Response:
        self.request_count += 1
        key = request.match_info["task_key"]
        try:
            started = await self.bot.scheduler.trigger(key)
        except NotFound:
            return web.json_response({"error": f"Unknown task '{key}'"}, status=404)
        if not started:
            return web.json_response({"triggered": False, "task": key, "reason": "already running"}, status=409)
        logger.info(f"Task {key} triggered over HTTP from {request.remote}")
        chat_logger = getattr(self.bot, "chat_logger", None)
        if chat_logger:
            await chat_logger.log_custom(
                service="Web Server",
                title="Scheduled Task Triggered",
                description=f"{key} was started through the task API",
                level=LogLevel.INFO,
                fields={"Task": key, "Client IP": str(request.remote)},
            )
        return web.json_response({"triggered": True, "task": key})

    # ---------- autoposter webhooks ----------

    def _poster(self):
        poster = getattr(self.bot, "autoposter", None)
        if poster is None:
            raise web.HTTPServiceUnavailable(
                text=json.dumps({"error": "autoposter plugin is not loaded"}), content_type="application/json"
            )
        return poster

    async def _body(self, request: web.Request) -> dict:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise web.HTTPBadRequest(text=json.dumps({"error": "invalid JSON body"}), content_type="application/json")
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text=json.dumps({"error": "JSON object expected"}), content_type="application/json")
        return body

    async def _check_secret(self, request: web.Request, username: str) -> Optional[web.Response]:
        account = await self._poster().get(username)
        if account is None:
            return web.json_response({"error": "Account not found"}, status=404)
        if account.webhookSecret and request.headers.get(SECRET_HEADER) != account.webhookSecret:
            return web.json_response({"error": "invalid webhook secret"}, status=403)
        return None

    async def handle_xposter_add(self, request: web.Request) -> web.Response:
        self.request_count += 1
        poster = self._poster()
        body = await self._body(request)
        username, target = body.get("username"), body.get("targetChatId")
        if not username or not target:
            return web.json_response({"error": "username and targetChatId required"}, status=400)
        try:
            account = await poster.add(
                username,
                target,
                interval_minutes=body.get("intervalMinutes"),
                template=body.get("messageTemplate"),
                bearer_token=body.get("bearerToken"),
                webhook_secret=body.get("webhookSecret"),
            )
        except (InvalidInput, ValueError, TypeError) as e:
            return web.json_response({"error": str(e)}, status=400)
        return web.json_response({"success": True, "account": account.public_view()})

    async def handle_xposter_config(self, request: web.Request) -> web.Response:
        self.request_count += 1
        poster = self._poster()
        body = await self._body(request)
        username = body.get("username")
        if not username:
            return web.json_response({"error": "username required"}, status=400)
        denied = await self._check_secret(request, username)
        if denied is not None:
            return denied
        try:
            account = await poster.update_config(
                username,
                intervalMinutes=body.get("intervalMinutes"),
                template=body.get("messageTemplate"),
                enabled=body.get("enabled"),
                webhookSecret=body.get("webhookSecret"),
            )
        except NotFound:
            return web.json_response({"error": "Account not found"}, status=404)
        except (InvalidInput, ValueError, TypeError) as e:
            return web.json_response({"error": str(e)}, status=400)
        return web.json_response({"success": True, "account": account.public_view()})

    async def handle_xposter_test(self, request: web.Request) -> web.Response:
        self.request_count += 1
        poster = self._poster()
        body = await self._body(request)
        username = body.get("username")
        if not username:
            return web.json_response({"error": "username required"}, status=400)
        denied = await self._check_secret(request, username)
        if denied is not None:
            return denied
        try:
            report = await poster.test_account(username)
        except NotFound as e:
            return web.json_response({"error": str(e)}, status=404)
        except InvalidInput as e:
            return web.json_response({"error": str(e)}, status=400)
        except BotError as e:
            return web.json_response({"error": str(e)}, status=502)
        return web.json_response({"success": True, **report})

    async def handle_xposter_list(self, request: web.Request) -> web.Response:
        self.request_count += 1
        accounts = await self._poster().accounts()
        return web.json_response({"accounts": [a.public_view() for a in accounts]})

    # ---------- lifecycle ----------

    async def start(self):
        """Start the web server"""
        try:
            self._runner = web.AppRunner(self.app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.host, self.port)
            await site.start()
            logger.info(f"Web server started on {self.host}:{self.port}")
        except Exception as e:
            logger.error(f"Failed to start web server: {e}")
            chat_logger = getattr(self.bot, "chat_logger", None)
            if chat_logger:
                await chat_logger.log_error(
                    service="Web Server",
                    error=e,
                    context=f"Failed to start web server on {self.host}:{self.port}",
                )
            raise

    async def stop(self):
        """Stop the web server"""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Web server stopped")
