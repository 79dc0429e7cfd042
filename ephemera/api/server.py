"""aiohttp HTTP surface for the engine.

Caller identity comes from the ``X-User-Id`` header, set by the upstream
gateway after authentication.  Every handler is a thin translation from JSON
to one engine, presence or vault call.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

import pydantic
from aiohttp import WSMsgType, web

from ephemera.api.schemas import (
    DisconnectRequest,
    HeartbeatRequest,
    MessageIdsRequest,
    ReactRequest,
    SendRequest,
    VaultRequest,
)
from ephemera.config import settings
from ephemera.errors import AuthError, EphemeraError, Expired, NotFound, ValidationError
from ephemera.messages.models import conversation_key

if TYPE_CHECKING:
    from ephemera.app import Runtime
    from ephemera.messages.events import ChangeEvent

logger = logging.getLogger(__name__)

RUNTIME = web.AppKey("runtime", object)

_STATUS_BY_ERROR: dict[type[EphemeraError], int] = {
    ValidationError: 400,
    AuthError: 403,
    NotFound: 404,
    Expired: 410,
}


class _Unauthenticated(Exception):
    pass


def _runtime(request: web.Request) -> Runtime:
    return request.app[RUNTIME]


def _caller(request: web.Request) -> str:
    user_id = request.headers.get("X-User-Id", "").strip()
    if not user_id:
        raise _Unauthenticated
    return user_id


async def _body(request: web.Request, model: type[pydantic.BaseModel]) -> Any:
    try:
        payload = await request.json()
    except json.JSONDecodeError as exc:
        msg = "Invalid JSON"
        raise ValidationError(msg) from exc
    return model.model_validate(payload)


@web.middleware
async def error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Map engine errors onto HTTP statuses."""
    try:
        return await handler(request)
    except _Unauthenticated:
        return web.json_response({"error": "missing X-User-Id"}, status=401)
    except pydantic.ValidationError as exc:
        detail = exc.errors(include_url=False, include_context=False)
        return web.json_response({"error": "invalid request", "detail": detail}, status=400)
    except EphemeraError as exc:
        status = _STATUS_BY_ERROR.get(type(exc), 503)
        if status == 503:
            logger.exception("Request failed: %s %s", request.method, request.path)
        return web.json_response({"error": type(exc).__name__, "detail": str(exc)}, status=status)


# -- Messages ------------------------------------------------------------------


async def _send(request: web.Request) -> web.Response:
    sender_id = _caller(request)
    body: SendRequest = await _body(request, SendRequest)
    message = await _runtime(request).engine.send(
        sender_id,
        body.receiver_id,
        body.content,
        body.media_type,
        body.media_ref,
        body.auto_delete_mode,
    )
    return web.json_response(message.to_dict(), status=201)


async def _mark_delivered(request: web.Request) -> web.Response:
    receiver_id = _caller(request)
    body: MessageIdsRequest = await _body(request, MessageIdsRequest)
    ids = await _runtime(request).engine.mark_delivered(body.message_ids, receiver_id)
    return web.json_response({"delivered": ids})


async def _mark_viewed(request: web.Request) -> web.Response:
    receiver_id = _caller(request)
    body: MessageIdsRequest = await _body(request, MessageIdsRequest)
    ids = await _runtime(request).engine.mark_viewed_bulk(body.message_ids, receiver_id)
    return web.json_response({"viewed": ids})


async def _open(request: web.Request) -> web.Response:
    result = await _runtime(request).engine.open_once(
        request.match_info["message_id"], _caller(request)
    )
    return web.json_response(
        {
            "message_id": result.message_id,
            "content_ref": result.content_ref,
            "view_count": result.view_count,
            "is_viewed": result.is_viewed,
        }
    )


async def _close(request: web.Request) -> web.Response:
    message = await _runtime(request).engine.close_once(
        request.match_info["message_id"], _caller(request)
    )
    return web.json_response(message.to_dict())


async def _toggle_saved(request: web.Request) -> web.Response:
    result = await _runtime(request).engine.toggle_saved(
        request.match_info["message_id"], _caller(request)
    )
    return web.json_response({"saved": result.saved, "purged": result.purged})


async def _react(request: web.Request) -> web.Response:
    user_id = _caller(request)
    body: ReactRequest = await _body(request, ReactRequest)
    message = await _runtime(request).engine.react(
        request.match_info["message_id"], user_id, body.emoji
    )
    return web.json_response(message.to_dict())


async def _delete(request: web.Request) -> web.Response:
    await _runtime(request).engine.delete(request.match_info["message_id"], _caller(request))
    return web.json_response({"deleted": True})


async def _store_to_vault(request: web.Request) -> web.Response:
    owner_id = _caller(request)
    body: VaultRequest = await _body(request, VaultRequest)
    item = await _runtime(request).vault.store_to_vault(
        owner_id, request.match_info["message_id"], body.password
    )
    return web.json_response(item.to_dict(), status=201)


async def _list_vault(request: web.Request) -> web.Response:
    items = await _runtime(request).vault.list_items(_caller(request))
    return web.json_response({"items": [item.to_dict() for item in items]})


async def _cleanup(request: web.Request) -> web.Response:
    """POST /messages/cleanup — externally triggered sweep. Idempotent."""
    secret = request.headers.get("X-Sweep-Secret", "")
    if settings.sweep_secret and secret != settings.sweep_secret:
        logger.warning("Sweep rejected: invalid secret")
        return web.json_response({"error": "unauthorized"}, status=401)
    report = await _runtime(request).reaper.sweep()
    return web.json_response(report.to_dict())


# -- Conversations -------------------------------------------------------------


def _presence_payload(runtime: Runtime, viewer_id: str, subject_id: str) -> dict:
    record = runtime.tracker.observe(viewer_id, subject_id)
    return {
        "online": record.online,
        "in_chat": record.in_chat,
        "typing": record.typing,
        "last_seen": runtime.tracker.last_seen_label(viewer_id, subject_id),
    }


async def _open_conversation(request: web.Request) -> web.Response:
    viewer_id = _caller(request)
    partner_id = request.match_info["partner_id"]
    runtime = _runtime(request)
    messages = await runtime.open_conversation(viewer_id, partner_id)
    return web.json_response(
        {
            "messages": [m.to_dict() for m in messages],
            "presence": _presence_payload(runtime, viewer_id, partner_id),
        }
    )


async def _forward_events(ws: web.WebSocketResponse, queue: asyncio.Queue) -> None:
    try:
        while True:
            event: ChangeEvent = await queue.get()
            await ws.send_json(event.to_dict())
    except asyncio.CancelledError:
        return


async def _conversation_events(request: web.Request) -> web.WebSocketResponse:
    """GET /conversations/{partner_id}/events — live change stream."""
    user_id = _caller(request)
    partner_id = request.match_info["partner_id"]
    hub = _runtime(request).hub

    # Subscribe before the handshake completes so no change slips between them.
    queue: asyncio.Queue = asyncio.Queue()
    subscription = hub.subscribe(conversation_key(user_id, partner_id), queue.put_nowait)
    ws = web.WebSocketResponse(heartbeat=30)
    forwarder: asyncio.Task | None = None
    try:
        await ws.prepare(request)
        forwarder = asyncio.create_task(_forward_events(ws, queue))
        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                logger.warning("Event stream error for %s: %s", user_id, ws.exception())
    finally:
        hub.unsubscribe(subscription)
        if forwarder is not None:
            forwarder.cancel()
            await asyncio.gather(forwarder, return_exceptions=True)
    return ws


# -- Presence ------------------------------------------------------------------


async def _heartbeat(request: web.Request) -> web.Response:
    user_id = _caller(request)
    body: HeartbeatRequest = await _body(request, HeartbeatRequest)
    runtime = _runtime(request)
    runtime.tracker.heartbeat(
        user_id,
        body.partner_id,
        session_id=body.session_id,
        in_chat_target=body.in_chat_target,
        typing=body.typing,
    )
    return web.json_response({"partner": _presence_payload(runtime, user_id, body.partner_id)})


async def _disconnect(request: web.Request) -> web.Response:
    user_id = _caller(request)
    body: DisconnectRequest = await _body(request, DisconnectRequest)
    _runtime(request).tracker.disconnect(user_id, body.partner_id, body.session_id)
    return web.json_response({"ok": True})


async def _presence(request: web.Request) -> web.Response:
    viewer_id = _caller(request)
    return web.json_response(
        _presence_payload(_runtime(request), viewer_id, request.match_info["partner_id"])
    )


async def _health(request: web.Request) -> web.Response:
    """GET /health — basic liveness check."""
    return web.json_response({"status": "ok"})


# -- App -----------------------------------------------------------------------


def create_web_app(runtime: Runtime, *, manage_lifecycle: bool = False) -> web.Application:
    """Build the aiohttp Application with routes.

    With *manage_lifecycle*, the runtime's background jobs start and stop with
    the application.
    """
    app = web.Application(middlewares=[error_middleware])
    app[RUNTIME] = runtime

    app.router.add_get("/health", _health)
    app.router.add_post("/messages", _send)
    app.router.add_post("/messages/delivered", _mark_delivered)
    app.router.add_post("/messages/viewed", _mark_viewed)
    app.router.add_post("/messages/cleanup", _cleanup)
    app.router.add_post("/messages/{message_id}/open", _open)
    app.router.add_post("/messages/{message_id}/close", _close)
    app.router.add_post("/messages/{message_id}/save", _toggle_saved)
    app.router.add_post("/messages/{message_id}/react", _react)
    app.router.add_post("/messages/{message_id}/vault", _store_to_vault)
    app.router.add_delete("/messages/{message_id}", _delete)
    app.router.add_get("/vault", _list_vault)
    app.router.add_get("/conversations/{partner_id}", _open_conversation)
    app.router.add_get("/conversations/{partner_id}/events", _conversation_events)
    app.router.add_post("/presence/heartbeat", _heartbeat)
    app.router.add_post("/presence/disconnect", _disconnect)
    app.router.add_get("/presence/{partner_id}", _presence)

    if manage_lifecycle:

        async def _on_startup(app: web.Application) -> None:
            await runtime.start()

        async def _on_cleanup(app: web.Application) -> None:
            await runtime.stop()

        app.on_startup.append(_on_startup)
        app.on_cleanup.append(_on_cleanup)

    return app
