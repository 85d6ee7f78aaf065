"""
Health check endpoint.
"""

from fastapi import APIRouter, Request
from pydantic import BaseModel
from datetime import datetime

from app.utils.config import get_settings

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    watcher_running: bool
    record_store_ok: bool
    records: int
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request):
    """
    Health check endpoint.

    Verifies:
    - API is running
    - Record store is readable and writable
    - Inbox watcher is active (when enabled)
    """
    settings = get_settings()
    inbox = request.app.state.inbox

    store_ok = not inbox.store.degraded
    watcher_running = inbox.watcher.is_running
    healthy = store_ok and (watcher_running or not inbox.settings.watch_inbox)

    return HealthResponse(
        status="healthy" if healthy else "degraded",
        timestamp=datetime.now(),
        watcher_running=watcher_running,
        record_store_ok=store_ok,
        records=len(inbox.store),
        version=settings.api_version
    )
