"""FastAPI application."""
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .context import AppContext, build_app_context
from .problem_details import register_problem_handlers
from .routers import files, members, messages, notifications, tickets, users


def _check_production_settings(settings: Settings) -> None:
    if settings.ENV.lower() != "production":
        return
    if settings.JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if not settings.cors_origins:
        raise RuntimeError("ALLOWED_ORIGINS must be set in production (explicit frontend origin required).")
    if any(origin.strip() == "*" for origin in settings.cors_origins):
        raise RuntimeError("ALLOWED_ORIGINS must be explicit in production (no wildcard when using credentials).")


def create_app(context: Optional[AppContext] = None) -> FastAPI:
    """Build the API around ``context``; a context is built from settings when omitted."""
    ctx = context or build_app_context(get_settings())
    settings = ctx.settings
    _check_production_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        ctx.close()

    app = FastAPI(
        title="TicketDesk Support API",
        version="1.0.0",
        description="Backend API for multi-tenant support ticket collaboration",
        lifespan=lifespan,
    )
    app.state.context = ctx
    register_problem_handlers(app)

    cors_headers = ["Authorization", "Content-Type"]
    if settings.ENV.lower() != "production":
        cors_headers = ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=cors_headers,
    )

    app.include_router(users.router, prefix="/api/v1")
    app.include_router(tickets.router, prefix="/api/v1")
    app.include_router(members.router, prefix="/api/v1")
    app.include_router(messages.router, prefix="/api/v1")
    app.include_router(files.router, prefix="/api/v1")
    app.include_router(notifications.router, prefix="/api/v1")

    @app.get("/api/v1/system/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok", "version": "1.0.0"}

    @app.get("/")
    def root():
        return {"message": f"{settings.APP_NAME} API", "version": "1.0.0", "docs": "/docs"}

    return app


app = create_app()
