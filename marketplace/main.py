from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .database import init_db
from .services.errors import ErrorCode, MarketplaceError

from .api.users import router as users_router
from .api.hierarchy import router as hierarchy_router
from .api.pricing import router as pricing_router
from .api.projects import router as projects_router
from .api.assignments import router as assignments_router
from .api.financial import router as financial_router
from .api.reference_codes import router as reference_codes_router
from .api.notifications import router as notifications_router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Assignment Marketplace API",
        version=settings.app_version,
    )

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Startup ---
    @app.on_event("startup")
    def _startup() -> None:
        # Creates tables for all registered SQLModel models (idempotent)
        init_db()

    # --- Error envelopes ---
    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        if exc.status_code >= 500:
            logger.error("%s on %s %s: %s", exc.code.value, request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("Database error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Database error", "code": ErrorCode.DATABASE_ERROR.value},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        # Keep FastAPI semantics but provide a consistent JSON structure
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    # --- Health / meta ---
    @app.get("/health", tags=["meta"])
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "env": settings.env,
            "api_base": settings.public_api_base,
        }

    @app.get("/version", tags=["meta"])
    def version() -> Dict[str, Any]:
        return {"version": settings.app_version}

    # --- API routers ---
    app.include_router(users_router)
    app.include_router(hierarchy_router)
    app.include_router(pricing_router)
    app.include_router(projects_router)
    app.include_router(assignments_router)
    app.include_router(financial_router)
    app.include_router(reference_codes_router)
    app.include_router(notifications_router)

    return app


app = create_app()


def run() -> None:
    logging.basicConfig(level=getattr(logging, settings.log_level, logging.INFO))
    import uvicorn

    # NOTE: init_db is handled by the FastAPI startup hook.
    uvicorn.run(
        "marketplace.main:app",
        host=settings.host,
        port=int(settings.port),
        reload=bool(settings.reload),
    )
