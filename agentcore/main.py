from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .dependencies import get_registry
from .engine import build_error_envelope, new_request_id
from .routers import agents as agents_router
from .routers import memory as memory_router
from .storage import memory_store


logger = logging.getLogger("agent-core")


def configure_logging() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize DB; cancel streams and flush pending memory writes on shutdown."""
    configure_logging()
    memory_store.init_db()
    registry = get_registry()
    yield
    await registry.shutdown()


app = FastAPI(title="Agent Core", version="0.1.0", lifespan=lifespan)


# CORS: controlled by env CORS_ORIGINS (e.g. * or http://localhost:3000)
_cors_origins_list = [o.strip() for o in get_settings().cors_origins.strip().split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(agents_router.router)
app.include_router(memory_router.router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    status_code, body = build_error_envelope(
        request_id=new_request_id(),
        agent_id=request.path_params.get("agent_id"),
        status_code=400,
        code="MALFORMED_REQUEST",
        message="Request failed validation",
        details=[{"path": list(e.get("loc", [])), "message": e.get("msg", "")} for e in exc.errors()],
    )
    return JSONResponse(status_code=status_code, content=body)


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error path=%s", request.url.path)
    status_code, body = build_error_envelope(
        request_id=new_request_id(),
        agent_id=request.path_params.get("agent_id"),
        status_code=500,
        code="INTERNAL_ERROR",
        message="Internal server error",
        details={"message": str(exc)},
    )
    return JSONResponse(status_code=status_code, content=body)


@app.get("/")
async def root() -> Dict[str, Any]:
    """
    Service metadata endpoint.
    """
    settings = get_settings()
    return {
        "service": settings.service_name,
        "provider": settings.provider_name,
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health")
async def health() -> JSONResponse:
    settings = get_settings()
    payload = {
        "status": "ok",
        "service": settings.service_name,
        "provider": settings.provider_name,
        "workspace": settings.workspace_root is not None,
    }
    return JSONResponse(status_code=200, content=payload)


def get_app() -> FastAPI:
    """Convenience accessor for external runners."""
    return app
