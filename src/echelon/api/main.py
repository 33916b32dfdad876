import logging
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from echelon.config import settings
from echelon.exceptions import (
    AccessDenied,
    DataSourceError,
    HierarchyError,
    IntegrityFault,
    MutationRejected,
    NotFoundError,
)
from echelon.api.middleware import add_request_id, enforce_body_size, log_requests

# Routers
from echelon.api.routers import assignments, hierarchy, system, units, users

# Configure logging
logging.basicConfig(level=getattr(logging, settings.logging.level.upper(), logging.INFO))
logger = logging.getLogger("echelon.api")


def _with_request_id(request: Request, payload: dict) -> dict:
    rid = getattr(request.state, "request_id", None)
    if rid:
        payload["request_id"] = rid
    return payload


def _hierarchy_status(exc: HierarchyError) -> int:
    if isinstance(exc, AccessDenied):
        return 403
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, IntegrityFault):
        return 503
    if isinstance(exc, MutationRejected):
        return 409
    return 400


def create_app(db_path: Optional[Path] = None) -> FastAPI:
    """
    Factory to build the FastAPI application.
    Passing db_path points the shared Database dependency at a new file (used in tests).
    """
    if db_path:
        settings.paths.db_path = db_path
        import echelon.api.deps as deps
        deps._db_instance = None  # reset global instance

    app = FastAPI(title="Echelon API", version=settings.app.version)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Custom Middleware
    app.middleware("http")(add_request_id)
    app.middleware("http")(enforce_body_size)
    if settings.logging.log_requests:
        app.middleware("http")(log_requests)

    app.include_router(system.router)
    app.include_router(hierarchy.router)
    app.include_router(units.router)
    app.include_router(users.router)
    app.include_router(assignments.router)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        if isinstance(exc, StarletteHTTPException):
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        logger.exception("Unhandled error", extra={"path": str(request.url), "request_id": getattr(request.state, "request_id", None)})
        payload = {"error": "internal_error", "detail": "Unexpected server error"}
        return JSONResponse(status_code=500, content=_with_request_id(request, payload))

    @app.exception_handler(HierarchyError)
    async def hierarchy_exception_handler(request: Request, exc: HierarchyError):
        status = _hierarchy_status(exc)
        if isinstance(exc, IntegrityFault):
            # Cycle paths and unit ids stay in the server log.
            payload = {"error": "hierarchy_unavailable", "detail": "hierarchy temporarily unavailable for this unit"}
        else:
            payload = exc.to_payload()
        return JSONResponse(status_code=status, content=_with_request_id(request, payload))

    @app.exception_handler(DataSourceError)
    async def datasource_exception_handler(request: Request, exc: DataSourceError):
        payload = {"error": "invalid_source", "detail": str(exc)}
        return JSONResponse(status_code=422, content=_with_request_id(request, payload))

    return app


# Module-level app for uvicorn entrypoint
app = create_app()
