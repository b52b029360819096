"""Process-wide collaborators, built once at startup and passed explicitly."""
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from fastapi import Request

from .config import Settings
from .database import SessionFactory, build_engine, build_session_factory
from .jobs import CeleryJobQueue, InlineJobQueue, JobQueue
from .services.blob_store import LocalBlobStore
from .services.channels import EmailSender, WhatsAppSender
from .services.realtime import RedisEventPublisher


@dataclass
class AppContext:
    settings: Settings
    session_factory: SessionFactory
    whatsapp: WhatsAppSender
    email: EmailSender
    blob_store: LocalBlobStore
    publisher: RedisEventPublisher
    jobs: JobQueue
    # Shared pool for dashboard batch queries; caps in-flight store queries process-wide.
    query_pool: ThreadPoolExecutor | None = None

    def __post_init__(self) -> None:
        if self.query_pool is None:
            self.query_pool = ThreadPoolExecutor(
                max_workers=max(1, self.settings.AGGREGATION_MAX_WORKERS),
                thread_name_prefix="ticket-loader",
            )

    def submit_job(self, name: str, **payload: Any) -> None:
        self.jobs.submit(self, name, payload)

    def close(self) -> None:
        self.query_pool.shutdown(wait=False)


def build_app_context(settings: Settings) -> AppContext:
    engine = build_engine(settings)
    return AppContext(
        settings=settings,
        session_factory=build_session_factory(engine),
        whatsapp=WhatsAppSender(base_url=settings.WHATSAPP_API_BASE_URL, token=settings.WHATSAPP_API_TOKEN),
        email=EmailSender(
            api_url=settings.EMAIL_API_URL,
            api_key=settings.EMAIL_API_KEY,
            sender=settings.EMAIL_FROM,
        ),
        blob_store=LocalBlobStore(root=settings.UPLOAD_DIR, public_base_url=settings.API_BASE_URL),
        publisher=RedisEventPublisher.from_url(settings.REDIS_URL),
        jobs=InlineJobQueue() if settings.JOBS_INLINE else CeleryJobQueue(),
    )


def get_app_context(request: Request) -> AppContext:
    """FastAPI dependency."""
    return request.app.state.context
