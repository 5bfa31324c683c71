"""
Dashboard Routes — Invalidation version for staff dashboards, over HTTP
and as a WebSocket push.
"""
import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from cemetery.schemas.schemas import DashboardVersionResponse
from cemetery.services.dashboard_notifier import dashboard_notifier

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Dashboard"])

WS_CHECK_INTERVAL_SECONDS = 1.0


def _message(event: str) -> dict:
    snapshot = dashboard_notifier.snapshot()
    updated_at = snapshot["updated_at"]
    return {
        "event": event,
        "version": snapshot["version"],
        "reason": snapshot["reason"],
        "updated_at": updated_at.isoformat() if updated_at else None,
    }


@router.get("/api/dashboard/version", response_model=DashboardVersionResponse)
def dashboard_version():
    """Clients refetch their dashboard data when this number moves."""
    return dashboard_notifier.snapshot()


@router.websocket("/ws/dashboard")
async def dashboard_updates(websocket: WebSocket):
    """Send the current version on connect, then a ``dashboard-update`` on every change."""
    await websocket.accept()
    seen = dashboard_notifier.version
    await websocket.send_json(_message("dashboard-version"))
    logger.info("Dashboard websocket connected")
    try:
        while True:
            try:
                await asyncio.wait_for(websocket.receive_text(), timeout=WS_CHECK_INTERVAL_SECONDS)
            except asyncio.TimeoutError:
                pass
            current = dashboard_notifier.version
            if current != seen:
                seen = current
                await websocket.send_json(_message("dashboard-update"))
    except WebSocketDisconnect:
        logger.info("Dashboard websocket disconnected")
