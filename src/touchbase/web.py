from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from touchbase import config
from touchbase.container import Services, build_services
from touchbase.errors import (
    NotAuthenticated,
    NotFoundOrAccessDenied,
    RelationshipConflict,
    StoreError,
    ValidationError,
)
from touchbase.models import to_wire
from touchbase.routes import activities, relationships, reminders

logger = logging.getLogger(__name__)


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_failed(request: Request, exc: ValidationError):
        return JSONResponse(exc.to_dict(), status_code=422)

    @app.exception_handler(NotFoundOrAccessDenied)
    async def not_found(request: Request, exc: NotFoundOrAccessDenied):
        return JSONResponse({"error": "not_found", "detail": str(exc)}, status_code=404)

    @app.exception_handler(NotAuthenticated)
    async def not_authenticated(request: Request, exc: NotAuthenticated):
        return JSONResponse({"error": "not_authenticated", "detail": str(exc)}, status_code=401)

    @app.exception_handler(RelationshipConflict)
    async def conflict(request: Request, exc: RelationshipConflict):
        return JSONResponse(
            {
                "error": "relationship_exists",
                "detail": str(exc),
                "existing": to_wire(exc.existing),
                "options": {"edit": exc.existing.id, "fork": exc.fork_name},
            },
            status_code=409,
        )

    @app.exception_handler(StoreError)
    async def store_failed(request: Request, exc: StoreError):
        logger.error("Store failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            {"error": "store_unavailable", "detail": str(exc), "retryable": exc.retryable},
            status_code=503,
        )


def create_app(db_path: Path | None = None, services: Services | None = None) -> FastAPI:
    services = services or build_services(db_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Pending notifications live in memory; rebuild them for the configured user.
        user_id = config.current_user()
        if user_id:
            count = await services.engagement.reschedule_all_notifications(user_id)
            logger.info("Rescheduled notifications for %d reminders", count)
        yield

    app = FastAPI(title="Touchbase", lifespan=lifespan)
    app.state.services = services

    app.include_router(relationships.router)
    app.include_router(activities.router)
    app.include_router(reminders.router)
    _install_error_handlers(app)

    return app
