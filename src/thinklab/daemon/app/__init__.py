"""ThinkLab daemon application package.

Creates the FastAPI app, registers routers and error handlers, and wires up
lifecycle events. Re-exports `app` so consumers can use:
    from thinklab.daemon.app import app
"""

import os
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from thinklab import __version__
from ..errors import LedgerError
from ..utils.logging_config import StructuredLogger, setup_logging

load_dotenv()
setup_logging(os.getenv("THINKLAB_LOG_LEVEL", "INFO"))

logger = StructuredLogger(__name__)

app = FastAPI(title="ThinkLab", version=__version__)


def _split_csv_env(name: str) -> list[str]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


cors_origins = _split_csv_env("THINKLAB_CORS_ORIGINS")
if cors_origins:
    allow_credentials = "*" not in cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

trusted_hosts = _split_csv_env("THINKLAB_ALLOWED_HOSTS")
if trusted_hosts:
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)


@app.exception_handler(LedgerError)
async def _ledger_error_handler(request: Request, exc: LedgerError):
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, error=exc.code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


# --- Lifecycle ---
from .lifecycle import startup_event, shutdown_event


@app.on_event("startup")
async def _startup():
    await startup_event(app)


@app.on_event("shutdown")
async def _shutdown():
    await shutdown_event()


# --- Routers ---
from .admin import router as admin_router
from .actions import router as actions_router

app.include_router(admin_router)
app.include_router(actions_router)

__all__ = ["app"]
