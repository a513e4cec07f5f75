"""FastAPI routes for chat sessions and cost monitoring."""

import asyncio
import secrets
import threading
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Query, Request
from starlette.concurrency import run_in_threadpool

from ..core.manager import SessionManager
from .schemas import (
    MessagePayload,
    StartPayload,
    cost_stats_body,
    history_body,
    turn_result_body,
)

router = APIRouter(prefix="/api/chat")

DISCONNECT_POLL_SECONDS = 0.5


def get_manager(request: Request) -> SessionManager:
    return request.app.state.manager


async def _watch_disconnect(request: Request, cancelled: threading.Event) -> None:
    """Flag ``cancelled`` once the client has gone away."""
    while not cancelled.is_set():
        if await request.is_disconnected():
            cancelled.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@router.post("/session", status_code=201)
async def create_session_route(request: Request, payload: Optional[StartPayload] = None):
    manager = get_manager(request)
    owner_id = payload.user_id if payload is not None else None
    session_id, welcome = manager.create_session(owner_id)
    return {"success": True, "sessionId": session_id, "welcomeMessage": welcome}


@router.post("/message")
async def send_message_route(request: Request, payload: MessagePayload):
    manager = get_manager(request)
    cancelled = threading.Event()
    watcher = asyncio.create_task(_watch_disconnect(request, cancelled))
    try:
        result = await run_in_threadpool(
            manager.send_message, payload.session_id, payload.message, cancelled.is_set
        )
    finally:
        watcher.cancel()
    return turn_result_body(result)


@router.get("/history/{session_id}")
async def history_route(request: Request, session_id: str, limit: int = Query(default=50, gt=0)):
    manager = get_manager(request)
    # Session locks are held for a whole provider call; never wait on one in the event loop.
    status, turns = await run_in_threadpool(manager.get_history, session_id, limit)
    return history_body(session_id, status, turns)


@router.put("/session/{session_id}/end")
async def end_session_route(request: Request, session_id: str):
    await run_in_threadpool(get_manager(request).end_session, session_id)
    return {"success": True, "message": "Chat session ended"}


@router.get("/cost-stats")
async def cost_stats_route(request: Request):
    return cost_stats_body(get_manager(request).cost_stats())


@router.post("/reset-costs")
async def reset_costs_route(request: Request, x_admin_token: Optional[str] = Header(default=None)):
    expected = request.app.state.config.admin_token
    if not expected:
        raise HTTPException(status_code=403, detail="Cost reset is disabled: no admin token configured")
    if not x_admin_token or not secrets.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=403, detail="Invalid admin token")
    get_manager(request).reset_costs()
    return {"success": True}
