"""ThinkLab daemon lifecycle: startup, shutdown, sweep loop, shared gateway."""

import os
import asyncio

from ..db import init_db, check_db_integrity
from ..gateway import ActionGateway
from ..providers import OpenAIProvider
from ..runtime import reconcile_stale_reservations
from ..utils.config_loader import config_loader
from ..utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)

# Shared gateway (and its provider's connection pool)
_gateway: ActionGateway | None = None
_sweep_task: asyncio.Task | None = None


def get_gateway() -> ActionGateway:
    global _gateway
    if _gateway is None:
        config = config_loader.get_config()
        provider = OpenAIProvider(config.provider)
        _gateway = ActionGateway.from_config(provider, config)
    return _gateway


def reload_gateway() -> None:
    """Apply the current config to the shared gateway.

    The provider (and its connection pool) survives the reload, and
    resolutions still running on the old gateway stay visible to drain().
    """
    global _gateway
    if _gateway is None:
        return
    config = config_loader.get_config()
    configure = getattr(_gateway.provider, "configure", None)
    if configure is not None:
        configure(config.provider)
    _gateway = _gateway.reconfigured(config)


async def startup_event(app):
    """Called on FastAPI startup."""
    global _sweep_task
    strict_startup = (os.getenv("THINKLAB_STARTUP_STRICT", "0").strip() == "1")
    init_timeout_sec = max(5, int(os.getenv("THINKLAB_STARTUP_INIT_TIMEOUT_SECONDS", "30")))
    recovery_timeout_sec = max(5, int(os.getenv("THINKLAB_STARTUP_RECOVERY_TIMEOUT_SECONDS", "30")))

    try:
        await asyncio.wait_for(asyncio.to_thread(init_db), timeout=init_timeout_sec)
    except Exception as exc:
        logger.error("Startup database init failed", error=str(exc), strict=strict_startup)
        if strict_startup:
            os._exit(1)

    try:
        ok = await asyncio.wait_for(asyncio.to_thread(check_db_integrity), timeout=init_timeout_sec)
        if not ok:
            logger.error("Startup database integrity failed", strict=strict_startup)
            if strict_startup:
                os._exit(1)
    except Exception as exc:
        logger.error("Startup database integrity error", error=str(exc), strict=strict_startup)
        if strict_startup:
            os._exit(1)

    try:
        config_loader.load_config()
    except Exception as exc:
        logger.error("Config load failed on startup", error=str(exc), strict=strict_startup)
        if strict_startup:
            os._exit(1)

    try:
        logger.info("Running reconciliation sweep...")
        summary = await asyncio.wait_for(
            asyncio.to_thread(reconcile_stale_reservations),
            timeout=recovery_timeout_sec,
        )
        logger.info("Reconciliation summary", **summary)
    except Exception as exc:
        logger.error("Startup reconciliation sweep failed", error=str(exc), strict=strict_startup)
        if strict_startup:
            os._exit(1)

    _sweep_task = asyncio.create_task(sweep_loop())


async def shutdown_event():
    """Called on FastAPI shutdown."""
    global _gateway, _sweep_task
    if _sweep_task is not None:
        _sweep_task.cancel()
        try:
            await _sweep_task
        except asyncio.CancelledError:
            pass
        _sweep_task = None

    if _gateway is not None:
        await _gateway.drain()
        await _gateway.provider.aclose()
        _gateway = None


async def sweep_loop():
    interval_sec = max(5, int(os.getenv("THINKLAB_SWEEP_SECONDS", "60")))
    logger.info("Reconciliation loop started", interval_seconds=interval_sec)
    while True:
        await asyncio.sleep(interval_sec)
        try:
            await asyncio.to_thread(reconcile_stale_reservations)
        except Exception as e:
            logger.error("Reconciliation loop error", error=str(e))
