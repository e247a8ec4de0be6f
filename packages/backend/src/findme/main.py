"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The lifespan builds every hub from settings, starts them, and
stores them on app.state so handlers (and the health route) can reach
them. Shutdown runs in reverse: stop producing (cron), then drain the
fan-out hubs, then close the chat rooms, then the database pool.
"""

from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from fastapi import FastAPI

from findme import __version__
from findme.api import api_router
from findme.config import settings
from findme.db.engine import async_session_factory, engine
from findme.realtime.chat_hub import ChatHub
from findme.services.cron import CronScheduler
from findme.services.email_hub import EmailHub, SMTPSender
from findme.services.embedding_hub import EmbeddingHub
from findme.services.recommendation_hub import RecommendationHub
from findme.services.reminder_scheduler import ReminderScheduler
from findme.services.user_store import UserStore

logger = structlog.get_logger()


def build_embedding_hub() -> EmbeddingHub:
    cfg = settings.embedding
    return EmbeddingHub(
        cfg.queue_size,
        cfg.workers,
        cfg.rpc_address,
        retry_backoff_seconds=cfg.retry_backoff_seconds,
        call_timeout_seconds=cfg.call_timeout_seconds,
    )


def build_recommendation_hub() -> RecommendationHub:
    cfg = settings.recommendation
    return RecommendationHub(
        cfg.queue_size,
        cfg.workers,
        cfg.rpc_address,
        retry_backoff_seconds=cfg.retry_backoff_seconds,
        call_timeout_seconds=cfg.call_timeout_seconds,
    )


def build_email_hub() -> EmailHub:
    cfg = settings.email
    return EmailHub(cfg.queue_size, cfg.workers, sender=SMTPSender(cfg))


def build_reminder_scheduler(email: EmailHub, cron: CronScheduler) -> ReminderScheduler:
    return ReminderScheduler(
        UserStore(async_session_factory),
        email,
        cron,
        trial_cron=settings.scheduler.trial_cron,
        window=timedelta(hours=settings.scheduler.reminder_window_hours),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Hubs are created here, not at import time, so each app
    instance (and each test) gets its own queues on its own event loop.
    """
    logger.info(
        "findme.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    chat_hub = ChatHub(broadcast_buffer=settings.chat.broadcast_buffer)
    embedding_hub = build_embedding_hub()
    recommendation_hub = build_recommendation_hub()
    email_hub = build_email_hub()
    cron = CronScheduler(timezone=settings.scheduler.timezone)

    chat_hub.run()
    embedding_hub.run()
    recommendation_hub.run()
    email_hub.run()

    reminders = build_reminder_scheduler(email_hub, cron)
    if not reminders.trial_ending_reminders():
        logger.error("findme.reminders_disabled", cron=settings.scheduler.trial_cron)
    cron.start()

    app.state.chat_hub = chat_hub
    app.state.embedding_hub = embedding_hub
    app.state.recommendation_hub = recommendation_hub
    app.state.email_hub = email_hub
    app.state.reminders = reminders

    yield

    # Shutdown
    logger.info("findme.shutdown")

    await cron.stop()
    await embedding_hub.stop()
    await recommendation_hub.stop()
    await chat_hub.stop()
    await email_hub.stop()

    await engine.dispose()


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="FindMe Core",
        description="Embedding/recommendation fan-out, real-time chat and reminders",
        version=__version__,
        lifespan=lifespan,
    )

    from findme.middleware.request_id import RequestIdMiddleware

    app.add_middleware(RequestIdMiddleware)

    app.include_router(api_router)

    from findme.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: findme.main:app)
app = create_app()
