"""
Inbound HTTP callback for async video moderation results.

Hive retries any non-2xx answer, so once a body is readable the handler
always answers 200, including for unknown or already finished tasks.
"""
import hmac
import logging
from typing import Any, Optional

from aiohttp import web

logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhooks/moderation"
MAX_BODY_SIZE = 2 * 1024 * 1024

ORCHESTRATOR_KEY = web.AppKey("orchestrator", object)
SECRET_KEY = web.AppKey("webhook_secret", object)


@web.middleware
async def error_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException as ex:
        return web.json_response({"error": ex.reason}, status=ex.status)


def _task_id_from(body: dict) -> Optional[str]:
    task_id = body.get("taskId") or body.get("task_id")
    return str(task_id) if task_id else None


def _payload_from(body: dict) -> Any:
    # Our relay wraps the provider body; Hive itself posts it bare.
    if "providerPayload" in body:
        return body["providerPayload"]
    return body


async def handle_moderation_webhook(request: web.Request) -> web.Response:
    secret = request.app[SECRET_KEY]
    if secret:
        supplied = request.headers.get("X-Webhook-Secret", "")
        if not hmac.compare_digest(supplied.encode(), str(secret).encode()):
            logger.warning("Rejected moderation webhook with a bad secret from %s", request.remote)
            raise web.HTTPUnauthorized(reason="Invalid webhook secret")

    try:
        body = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(reason="Body must be JSON")
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(reason="Body must be a JSON object")

    task_id = _task_id_from(body)
    if task_id is None:
        raise web.HTTPBadRequest(reason="taskId is required")

    orchestrator = request.app[ORCHESTRATOR_KEY]
    try:
        outcome = await orchestrator.process_video_webhook(task_id, _payload_from(body))
        processed = outcome.success and not outcome.duplicate
    except Exception:
        logger.exception("Unexpected error while processing webhook for task %s", task_id)
        processed = False

    return web.json_response({"ok": True, "taskId": task_id, "processed": processed})


async def health_check(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


def create_app(orchestrator, secret: Optional[str] = None) -> web.Application:
    app = web.Application(client_max_size=MAX_BODY_SIZE, middlewares=[error_middleware])
    app[ORCHESTRATOR_KEY] = orchestrator
    app[SECRET_KEY] = secret
    app.router.add_post(WEBHOOK_PATH, handle_moderation_webhook)
    app.router.add_get("/healthz", health_check)
    return app


async def start_webhook_server(app: web.Application, host: str, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("Moderation webhook listening on %s:%s%s", host, port, WEBHOOK_PATH)
    return runner
