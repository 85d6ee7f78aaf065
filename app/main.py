"""
Inbox Organizer - Main FastAPI Application

Runs the inbox processing engine and exposes:
- Record state and per-stage timelines
- Recent issues (errored and bypassed files)
- Retry / re-enqueue / cancel / bypass operations
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
import sys

from app.utils.config import get_settings
from app.api import health, inbox
from domains.inbox.service import InboxService


# Configure logging
logger.remove()
logger.add(
    sys.stdout,
    format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
    level=get_settings().log_level
)


def create_app(service: Optional[InboxService] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Pre-built engine (tests); built from settings when omitted
    """
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info(f"Starting {settings.api_title} v{settings.api_version}")

        engine = service or InboxService(settings)
        app.state.inbox = engine
        try:
            engine.start()
        except Exception as e:
            logger.error(f"Failed to start inbox engine: {e}")
            raise

        yield

        # Cleanup
        logger.info("Shutting down application...")
        engine.stop()
        logger.success("Application shut down complete")

    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="Inbox processing engine for a notes vault",
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler."""
        logger.error(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.log_level == "DEBUG" else "An error occurred"
            }
        )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(inbox.router, prefix="/inbox", tags=["Inbox"])

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "service": "Inbox Organizer",
            "version": settings.api_version,
            "status": "operational",
            "docs": "/docs",
            "health": "/health"
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.api_port,
        reload=False,
        log_level=settings.log_level.lower()
    )
