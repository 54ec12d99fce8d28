"""Streaming endpoint: one websocket per client at /ws.

The connection is authenticated once at establishment (Authorization
header or `?token=` query) and every inbound frame is attributed to that
uid. Authentication failure closes the socket with 1008 before accept.

Frames are JSON objects with a "type":

    client -> server: subscribe, unsubscribe, chat.send, ping
    server -> client: subscribed, unsubscribed, message, dropped, error, pong

Database work runs in the threadpool. Live events arrive from LiveBus
subscriptions (possibly on another thread) and are written by a single
writer task, together with replies, so frames never interleave.
"""

import asyncio
import contextlib
import json
import uuid
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from talentlink.auth.identity import Identity, IdentityProvider
from talentlink.auth.middleware import AUTHORIZATION_HEADER, extract_bearer_token
from talentlink.errors import ApiError, ApiErrorCode
from talentlink.logging import clear_request_context, get_logger, set_ws_session
from talentlink.schemas.chat import SendMessageRequest
from talentlink.services import chat as chat_service
from talentlink.services import rooms
from talentlink.services.live_bus import LiveBus, Subscription, parse_room_topic

logger = get_logger(__name__)

router = APIRouter(tags=["streaming"])

# Policy violation: sent when the credential is missing or invalid
WS_CLOSE_POLICY_VIOLATION = 1008


def error_frame(code: ApiErrorCode, message: str) -> dict[str, Any]:
    return {"type": "error", "error": {"code": code.value, "message": message}}


async def authenticate_socket(websocket: WebSocket, token: str | None) -> Identity | None:
    """Resolve the socket's credential, closing with 1008 on failure."""
    identity_provider: IdentityProvider = websocket.app.state.identity_provider
    try:
        auth_header = websocket.headers.get(AUTHORIZATION_HEADER)
        if auth_header:
            token = extract_bearer_token(auth_header)
        elif not token:
            raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
        return await run_in_threadpool(identity_provider.verify, token)
    except ApiError as e:
        logger.warning("ws_auth_failed", code=e.code.value, reason=e.message)
        await websocket.close(code=WS_CLOSE_POLICY_VIOLATION, reason=e.message)
        return None


class ChatSocketSession:
    """One authenticated websocket: its subscriptions and its writer."""

    def __init__(
        self,
        websocket: WebSocket,
        identity: Identity,
        bus: LiveBus,
        session_factory: Callable[[], Session],
    ):
        self.websocket = websocket
        self.identity = identity
        self.bus = bus
        self.session_factory = session_factory
        self.session_id = str(uuid.uuid4())
        self.subscriptions: dict[str, Subscription] = {}
        self._outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._wakeup = asyncio.Event()
        self._loop = asyncio.get_running_loop()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        await self.websocket.accept()
        set_ws_session(self.session_id, str(self.identity.uid))
        logger.info("ws_session_opened")

        writer = asyncio.create_task(self._write_loop())
        try:
            await self._read_loop()
        except WebSocketDisconnect as e:
            logger.info("ws_session_closed", close_code=e.code)
        finally:
            for subscription in self.subscriptions.values():
                self.bus.unsubscribe(subscription)
            self.subscriptions.clear()
            writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await writer
            clear_request_context()

    def _notify(self) -> None:
        # Called by LiveBus from the publishing thread
        self._loop.call_soon_threadsafe(self._wakeup.set)

    def reply(self, frame: dict[str, Any]) -> None:
        self._outbox.put_nowait(frame)
        self._wakeup.set()

    async def _write_loop(self) -> None:
        while True:
            await self._wakeup.wait()
            self._wakeup.clear()
            try:
                while not self._outbox.empty():
                    await self.websocket.send_json(self._outbox.get_nowait())
                for topic, subscription in list(self.subscriptions.items()):
                    events, dropped = subscription.drain()
                    if dropped:
                        await self.websocket.send_json(
                            {"type": "dropped", "topic": topic, "count": dropped}
                        )
                    for event in events:
                        await self.websocket.send_json(
                            {"type": "message", "topic": topic, "data": event}
                        )
            except (WebSocketDisconnect, RuntimeError):
                # Socket went away under us; the read loop ends the session
                return

    async def _read_loop(self) -> None:
        while True:
            try:
                frame = await self.websocket.receive_json()
            except json.JSONDecodeError:
                self.reply(error_frame(ApiErrorCode.E_INVALID_REQUEST, "Frame is not valid JSON"))
                continue

            if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
                self.reply(error_frame(ApiErrorCode.E_INVALID_REQUEST, "Frame has no type"))
                continue

            try:
                await self._dispatch(frame)
            except ApiError as e:
                self.reply(error_frame(e.code, e.message))
            except DBAPIError as e:
                self.reply(self._storage_error_frame(frame["type"], e))
            except Exception:
                logger.exception("ws_frame_failed", frame_type=frame["type"])
                self.reply(error_frame(ApiErrorCode.E_INTERNAL, "An internal error occurred"))

    def _storage_error_frame(self, frame_type: str, exc: DBAPIError) -> dict[str, Any]:
        # Mirrors the HTTP handler: lost connections are retryable, the rest is internal
        if exc.connection_invalidated or isinstance(exc, OperationalError):
            logger.warning("storage_unavailable", frame_type=frame_type, error=str(exc.orig))
            return error_frame(
                ApiErrorCode.E_TRANSIENT, "Storage temporarily unavailable, retry later"
            )
        logger.error("ws_database_error", frame_type=frame_type, error=str(exc.orig))
        return error_frame(ApiErrorCode.E_INTERNAL, "An internal error occurred")

    # -------------------------------------------------------------------------
    # Frame handlers
    # -------------------------------------------------------------------------

    async def _dispatch(self, frame: dict[str, Any]) -> None:
        frame_type = frame["type"]
        if frame_type == "subscribe":
            await self._subscribe(frame.get("topic"))
        elif frame_type == "unsubscribe":
            self._unsubscribe(frame.get("topic"))
        elif frame_type == "chat.send":
            await self._chat_send(frame.get("payload"))
        elif frame_type == "ping":
            self.reply({"type": "pong"})
        else:
            raise ApiError(ApiErrorCode.E_INVALID_REQUEST, f"Unknown frame type: {frame_type}")

    def _in_session(self, fn: Callable[..., Any], *args: Any) -> Any:
        db = self.session_factory()
        try:
            return fn(db, *args)
        finally:
            db.close()

    async def _subscribe(self, topic: Any) -> None:
        room_id = parse_room_topic(topic) if isinstance(topic, str) else None
        if room_id is None:
            raise ApiError(ApiErrorCode.E_INVALID_REQUEST, "Topic must be room.<id>")

        await run_in_threadpool(
            self._in_session, rooms.get_room_for_participant, room_id, self.identity.uid
        )

        if topic not in self.subscriptions:
            self.subscriptions[topic] = self.bus.subscribe(topic, notify=self._notify)
            logger.info("ws_subscribed", topic=topic)
        self.reply({"type": "subscribed", "topic": topic})

    def _unsubscribe(self, topic: Any) -> None:
        subscription = self.subscriptions.pop(topic, None) if isinstance(topic, str) else None
        if subscription is not None:
            self.bus.unsubscribe(subscription)
        self.reply({"type": "unsubscribed", "topic": topic})

    async def _chat_send(self, payload: Any) -> None:
        try:
            request = SendMessageRequest.model_validate(payload)
        except ValidationError:
            raise ApiError(
                ApiErrorCode.E_INVALID_REQUEST, "chat.send needs roomId, receiverUid and content"
            ) from None

        await run_in_threadpool(
            self._in_session,
            chat_service.send_text,
            self.bus,
            self.identity.uid,
            request.room_id,
            request.receiver_uid,
            request.content,
        )


@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    token: str | None = Query(default=None),
) -> None:
    """Bidirectional chat stream (see module docstring for frames)."""
    identity = await authenticate_socket(websocket, token)
    if identity is None:
        return

    session = ChatSocketSession(
        websocket,
        identity,
        bus=websocket.app.state.live_bus,
        session_factory=websocket.app.state.session_factory,
    )
    await session.run()
