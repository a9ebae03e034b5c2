"""
Overlay Plans — Real-time channel.

WebSocket endpoint for UI clients. Clients send `{event, data, id?}` frames
to run time slot operations and receive `{event, id, data}` replies, plus a
`timeslots_updated` broadcast whenever a project they watch changes.

Each connection owns one outgoing queue drained by a single sender task, so
replies and broadcasts leave in the order they were produced. A client that
falls behind on broadcasts is closed with code 1013 and should reconnect and
refetch.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from src.core.notifier import DROPPED
from src.core.schemas import GetUserTimeslotsRequest
from src.core.tools import ToolName, dispatch
from src.ports.notification_port import TIMESLOTS_UPDATED, TimeslotsUpdated

if TYPE_CHECKING:
    from src.core.directory import Directory
    from src.core.errors import OperationResult
    from src.core.notifier import ChangeHub, Subscription
    from src.core.timeslot_service import TimeslotService

logger = logging.getLogger(__name__)

GET_USER_TIMESLOTS = "get_user_timeslots"
GET_USER_TIMESLOTS_BY_HANDLE = "get_user_timeslots_by_handle"
GET_PROJECT_TIMESLOTS = "get_project_timeslots"
SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"

# Close code telling a client it fell behind and must reconnect and refetch
TRY_AGAIN_LATER = 1013


def _result_to_wire(tool: ToolName, result: OperationResult) -> dict:
    if not result.success:
        return {
            "success": False,
            "error": result.error,
            "errorKind": result.error_kind.value if result.error_kind else None,
        }
    if tool is ToolName.DELETE:
        return {"success": True, "deletedCount": result.data}
    return {"success": True, "timeslots": [slot.to_wire() for slot in result.data]}


class _Connection:
    """One connected client."""

    def __init__(
        self,
        websocket: WebSocket,
        service: TimeslotService,
        directory: Directory,
        hub: ChangeHub,
    ) -> None:
        self._ws = websocket
        self._service = service
        self._directory = directory
        self._hub = hub
        self._sub: Subscription | None = None

    async def run(self) -> None:
        client = self._ws.client
        name = f"{client.host}:{client.port}" if client else "socket"
        self._sub = self._hub.subscribe(name=name)
        sender = asyncio.create_task(self._send_loop())
        logger.info("Client connected: %s", name)
        try:
            while not self._sub.closed:
                try:
                    frame = await self._ws.receive_json()
                except WebSocketDisconnect:
                    break
                except ValueError:
                    await self._reply("error", None, {"success": False, "error": "Malformed frame"})
                    continue
                await self._handle(frame)
        finally:
            self._hub.unsubscribe(self._sub)
            sender.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sender
            logger.info("Client disconnected: %s", name)

    async def _send_loop(self) -> None:
        queue = self._sub.queue
        while True:
            item = await queue.get()
            if item is DROPPED:
                await self._close_lagging()
                return
            if isinstance(item, TimeslotsUpdated):
                item = {"event": TIMESLOTS_UPDATED, "data": item.to_wire()}
            try:
                await self._ws.send_json(item)
            except Exception as exc:
                logger.info("Dropping client %s: %s", self._sub.name, exc)
                self._hub.unsubscribe(self._sub)
                return

    async def _close_lagging(self) -> None:
        logger.warning("Closing client %s: it fell behind on updates", self._sub.name)
        try:
            await self._ws.close(code=TRY_AGAIN_LATER, reason="Fell behind on updates; reconnect")
        except Exception as exc:
            logger.info("Could not close client %s: %s", self._sub.name, exc)

    async def _reply(self, event: str, frame_id: Any, data: Any) -> None:
        if self._sub.closed:
            return
        await self._sub.queue.put({"event": event, "id": frame_id, "data": data})

    # ------------------------------------------------------------------
    # Frame handling
    # ------------------------------------------------------------------

    async def _handle(self, frame: Any) -> None:
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self._reply("error", None, {"success": False, "error": "Frame must have an event"})
            return

        event = frame["event"]
        frame_id = frame.get("id")
        data = frame.get("data") or {}
        if not isinstance(data, dict):
            await self._reply(event, frame_id, {"success": False, "error": "data must be an object"})
            return

        try:
            reply = await self._route(event, data)
        except Exception as exc:
            logger.error("Error handling %s: %s", event, exc, exc_info=True)
            reply = {"success": False, "error": f"Error handling {event}"}
        await self._reply(event, frame_id, reply)

    async def _route(self, event: str, data: dict) -> Any:
        try:
            tool = ToolName(event)
        except ValueError:
            tool = None
        if tool is not None:
            return await self._run_tool(tool, data)
        if event == GET_USER_TIMESLOTS:
            return self._get_user_timeslots(data)
        if event == GET_USER_TIMESLOTS_BY_HANDLE:
            return self._get_user_timeslots_by_handle(data)
        if event == GET_PROJECT_TIMESLOTS:
            return self._get_project_timeslots(data)
        if event in (SUBSCRIBE, UNSUBSCRIBE):
            return self._toggle_subscription(event, data)
        logger.warning("Unknown event from %s: %s", self._sub.name, event)
        return {"success": False, "error": f"Unknown event: {event}"}

    async def _run_tool(self, tool: ToolName, data: dict) -> dict:
        args = dict(data)
        handle = args.pop("requestUserHandle", None)
        if handle is not None and "requestUserId" not in args:
            user = self._directory.find_user_by_handle(handle)
            if user is None:
                return {
                    "success": False,
                    "error": f"Requesting user with handle {handle} not found",
                    "errorKind": "not_found",
                }
            args["requestUserId"] = user.id
        result = await dispatch(tool, args, self._service)
        return _result_to_wire(tool, result)

    def _get_user_timeslots(self, data: dict) -> list[dict]:
        try:
            req = GetUserTimeslotsRequest.model_validate(data)
        except ValidationError as exc:
            logger.warning("Invalid get_user_timeslots request: %s", exc.error_count())
            return []
        slots = self._service.get_user_timeslots(req.project_id, req.user_id)
        return [slot.to_wire() for slot in slots]

    def _get_user_timeslots_by_handle(self, data: dict) -> list[dict]:
        handle = data.get("handle")
        project_id = data.get("projectId")
        if handle is None or not isinstance(project_id, int):
            return []
        user = self._directory.find_user_by_handle(handle)
        if user is None:
            return []
        return [slot.to_wire() for slot in self._service.get_user_timeslots(project_id, user.id)]

    def _get_project_timeslots(self, data: dict) -> list[dict]:
        project_id = data.get("projectId")
        if not isinstance(project_id, int):
            return []
        return [slot.to_wire() for slot in self._service.get_project_timeslots(project_id)]

    def _toggle_subscription(self, event: str, data: dict) -> dict:
        if self._sub.closed:
            return {"success": False, "error": "Updates were dropped; reconnect to subscribe again"}
        project_id = data.get("projectId")
        if not isinstance(project_id, int):
            return {"success": False, "error": "projectId must be an integer"}
        if event == SUBSCRIBE:
            self._hub.follow(self._sub, project_id)
        else:
            self._hub.unfollow(self._sub, project_id)
        return {"success": True, "projectIds": sorted(self._sub.project_ids)}


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def create_app(service: TimeslotService, directory: Directory, hub: ChangeHub) -> FastAPI:
    app = FastAPI(title="Overlay Plans Realtime", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "subscribers": hub.subscriber_count}

    @app.websocket("/socket")
    async def socket(websocket: WebSocket) -> None:
        await websocket.accept()
        await _Connection(websocket, service, directory, hub).run()

    return app


async def serve_app(app: FastAPI, host: str = "0.0.0.0", port: int = 3000, shutdown_trigger=None) -> None:
    """Serve `app` with hypercorn on the running event loop."""
    from hypercorn.asyncio import serve
    from hypercorn.config import Config

    config = Config()
    config.bind = [f"{host}:{port}"]
    logger.info("Real-time channel listening on %s:%d", host, port)
    await serve(app, config, shutdown_trigger=shutdown_trigger)
