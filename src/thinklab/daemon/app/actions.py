"""Caller-facing routes: perform actions, read balance, history and pricing."""

from __future__ import annotations

import os
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from ..gateway import ActionGateway
from ..ledger import store
from ..utils.config_loader import config_loader
from .lifecycle import get_gateway

router = APIRouter(prefix="/v1", tags=["actions"])

DEFAULT_ACCOUNT_HEADER = "X-ThinkLab-Account"


class ActionRequest(BaseModel):
    input: dict[str, Any] = Field(default_factory=dict)
    project_id: str | None = Field(default=None, max_length=120)
    metadata: dict[str, Any] | None = None


def _auto_provision_enabled() -> bool:
    return (os.getenv("THINKLAB_AUTO_PROVISION", "1").strip() != "0")


async def get_account_id(request: Request) -> str:
    """Account identity from the trusted header set by the identity proxy."""
    header = os.getenv("THINKLAB_ACCOUNT_HEADER", DEFAULT_ACCOUNT_HEADER)
    account_id = (request.headers.get(header) or "").strip()
    if not account_id:
        raise HTTPException(status_code=401, detail=f"Missing {header} header")

    if _auto_provision_enabled():
        existing = await run_in_threadpool(store.get_account, account_id)
        if existing is None:
            starting_balance = config_loader.ledger_settings().default_starting_balance
            await run_in_threadpool(
                lambda: store.provision_account(account_id, starting_balance=starting_balance)
            )
    return account_id


@router.post("/actions/{action_kind}")
async def perform_action_endpoint(
    action_kind: str,
    body: ActionRequest,
    account_id: str = Depends(get_account_id),
    gateway: ActionGateway = Depends(get_gateway),
):
    result = await gateway.perform_action(
        account_id,
        action_kind,
        body.input,
        project_id=body.project_id,
        metadata=body.metadata,
    )
    balance = await run_in_threadpool(store.get_balance, account_id)
    payload = result.to_dict()
    payload["balance"] = balance
    return payload


@router.get("/credits")
async def credits_endpoint(account_id: str = Depends(get_account_id)):
    account = await run_in_threadpool(store.get_account, account_id)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return {"account_id": account.account_id, "credits": account.balance, "active": account.active}


@router.get("/credits/history")
async def credits_history_endpoint(
    limit: int = Query(default=store.DEFAULT_HISTORY_LIMIT, ge=1),
    cursor: str | None = Query(default=None),
    account_id: str = Depends(get_account_id),
):
    max_limit = config_loader.ledger_settings().history_limit_max
    try:
        page = await run_in_threadpool(
            lambda: store.history(account_id, limit=limit, cursor=cursor, max_limit=max_limit)
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "account_id": account_id,
        "records": [record.to_dict(include_payloads=False) for record in page.records],
        "next_cursor": page.next_cursor,
    }


@router.get("/pricing")
async def pricing_endpoint():
    return {"pricing": config_loader.pricing_table().as_dict()}
