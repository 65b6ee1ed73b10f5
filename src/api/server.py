"""FastAPI server for the token meter."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.usage_routes import broadcast_event, usage_router
from src.config import settings
from src.notifications import NotificationManager, UsageAlerts
from src.providers import get_provider
from src.usage.cache import SummaryCache
from src.usage.scanner import resolve_projects_dir
from src.usage.scheduler import UsageScheduler
from src.usage.windows import windows_from_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize shared resources on startup."""
    provider = get_provider()
    cache = SummaryCache()
    app.state.usage_cache = cache

    scheduler = UsageScheduler(
        provider,
        cache,
        interval=float(settings.refresh_interval_seconds),
        projects_dir=resolve_projects_dir(settings.claude_dir or None),
        windows=windows_from_settings(),
        fetch_days=settings.fetch_days,
        on_event=broadcast_event,
    )
    app.state.usage_scheduler = scheduler

    # Slack / Telegram alerts on failures and rate-limit pressure
    notifier = NotificationManager()
    app.state.notifier = notifier
    if notifier.is_enabled:
        scheduler.subscribe(UsageAlerts(notifier))
        logger.info("Usage notifications enabled: %s", notifier.status())

    try:
        await scheduler.start()
    except Exception:
        logger.exception("Usage scheduler failed to start")

    yield

    # Shutdown
    await scheduler.stop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="TokenMeter - Claude Code usage",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(usage_router, prefix="/api")

    return app


app = create_app()
