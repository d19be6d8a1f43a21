"""ThinkLab admin endpoints: health/readiness, accounts, reconciliation, analytics."""

import os
import secrets

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..db import get_db_connection
from ..ledger import replay_account_balances, store
from ..observability import collect_active_alerts, liveness_report, readiness_report, summarize_alerts
from ..runtime import reconcile_stale_reservations
from ..utils.config_loader import config_loader
from ..utils.invariants import run_all_checks
from ..utils.logging_config import StructuredLogger
from ..utils.metrics import usage_analytics
from .lifecycle import reload_gateway

logger = StructuredLogger(__name__)
router = APIRouter()


class AccountCreateRequest(BaseModel):
    account_id: str = Field(..., min_length=1, max_length=200)
    starting_balance: int | None = Field(default=None, ge=0, le=10_000_000)


class GrantRequest(BaseModel):
    amount: int = Field(..., ge=1, le=10_000_000)
    reason: str = Field(default="operator grant", min_length=3, max_length=240)


class ReconcileRequest(BaseModel):
    stale_after_seconds: int | None = Field(default=None, ge=1)
    max_attempts: int | None = Field(default=None, ge=1)
    include_escalated: bool = False


def _require_control_key(request: Request) -> None:
    expected = (os.getenv("THINKLAB_ADMIN_CONTROL_KEY") or "").strip()
    if not expected:
        return
    provided = (request.headers.get("x-thinklab-admin-key") or "").strip()
    if not provided or not secrets.compare_digest(provided, expected):
        raise HTTPException(status_code=403, detail="Admin control key is required")


def _account_payload(account) -> dict:
    return {
        "account_id": account.account_id,
        "balance": account.balance,
        "active": account.active,
        "created_at": account.created_at,
        "deactivated_at": account.deactivated_at,
    }


@router.get("/health")
async def health():
    return liveness_report()


@router.get("/ready")
async def ready():
    ready_ok, report = await run_in_threadpool(readiness_report)
    status_code = 200 if ready_ok else 503
    return JSONResponse(content=report, status_code=status_code)


@router.post("/admin/accounts")
async def create_account_endpoint(body: AccountCreateRequest, request: Request):
    _require_control_key(request)
    starting = body.starting_balance
    if starting is None:
        starting = config_loader.ledger_settings().default_starting_balance
    try:
        account, created = await run_in_threadpool(
            lambda: store.provision_account(body.account_id, starting_balance=starting)
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    payload = _account_payload(account)
    payload["created"] = created
    return JSONResponse(content=payload, status_code=201 if created else 200)


@router.get("/admin/accounts/{account_id}")
async def get_account_endpoint(account_id: str, request: Request):
    _require_control_key(request)
    account = await run_in_threadpool(store.get_account, account_id)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return _account_payload(account)


@router.post("/admin/accounts/{account_id}/grant")
async def grant_endpoint(account_id: str, body: GrantRequest, request: Request):
    _require_control_key(request)
    balance = await run_in_threadpool(
        lambda: store.grant_credits(account_id, body.amount, reason=body.reason)
    )
    return {"account_id": account_id, "granted": body.amount, "balance": balance}


@router.post("/admin/accounts/{account_id}/deactivate")
async def deactivate_endpoint(account_id: str, request: Request):
    _require_control_key(request)
    account = await run_in_threadpool(store.deactivate_account, account_id)
    return _account_payload(account)


@router.post("/admin/accounts/{account_id}/reactivate")
async def reactivate_endpoint(account_id: str, request: Request):
    _require_control_key(request)
    account = await run_in_threadpool(store.set_account_active, account_id, True)
    return _account_payload(account)


@router.post("/admin/reconcile")
async def reconcile_endpoint(request: Request, body: ReconcileRequest | None = None):
    _require_control_key(request)
    body = body or ReconcileRequest()
    return await run_in_threadpool(
        lambda: reconcile_stale_reservations(
            stale_after_seconds=body.stale_after_seconds,
            max_attempts=body.max_attempts,
            include_escalated=body.include_escalated,
        )
    )


@router.get("/admin/analytics")
async def analytics_endpoint(request: Request, account_id: str | None = Query(default=None)):
    _require_control_key(request)
    return await run_in_threadpool(usage_analytics, account_id)


@router.get("/admin/invariants")
async def invariants_endpoint(request: Request):
    _require_control_key(request)
    stale_after = config_loader.ledger_settings().stale_after_seconds

    def _run():
        with get_db_connection() as conn:
            return run_all_checks(conn, stale_after_seconds=stale_after)

    results = await run_in_threadpool(_run)
    return {
        "ok": all(r.passed for r in results),
        "checks": [{"name": r.name, "passed": r.passed, "detail": r.detail} for r in results],
    }


@router.get("/admin/replay")
async def replay_endpoint(request: Request, account_id: str | None = Query(default=None)):
    _require_control_key(request)
    return await run_in_threadpool(replay_account_balances, account_id)


@router.get("/admin/alerts")
async def alerts_endpoint(request: Request):
    _require_control_key(request)
    alerts = await run_in_threadpool(collect_active_alerts)
    return {"alerts": alerts, "summary": summarize_alerts(alerts)}


@router.post("/admin/reload_config")
async def reload_config_endpoint(request: Request):
    _require_control_key(request)
    try:
        config_loader.load_config()
    except Exception as e:
        logger.error("Config reload failed", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))
    reload_gateway()
    return {"status": "ok", "message": "Configuration reloaded"}
