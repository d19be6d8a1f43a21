"""Action gateway: price, reserve, call the provider, then commit or refund.

Per request: START -> PRICED -> RESERVED -> CALLING -> (COMMITTED | REFUNDED).
Reservation and resolution are short ledger transactions run in worker
threads; the provider call between them holds no lock and no transaction.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable

from ..errors import InvalidStateTransition, LedgerError, ProviderFailure, ReconciliationRequired
from ..ledger import store
from ..ledger.models import ActionRecord, RefundInitiator
from ..pricing import ActionKind, PricingTable, parse_action_kind
from ..providers.base import CapabilityProvider
from ..providers.inputs import validate_action_input
from ..utils.config_loader import ThinkLabConfig
from ..utils.logging_config import StructuredLogger

logger = StructuredLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    record_id: str
    action_kind: ActionKind
    output: dict[str, Any]
    credits_charged: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "record_id": self.record_id,
            "action_kind": str(self.action_kind),
            "output": self.output,
            "credits_charged": self.credits_charged,
        }


class ActionGateway:
    def __init__(
        self,
        provider: CapabilityProvider,
        pricing: PricingTable | None = None,
        *,
        provider_timeout_seconds: float = 60.0,
        refund_max_attempts: int | None = None,
        refund_backoff_seconds: float = 0.5,
        refund_backoff_max_seconds: float = 30.0,
        critical_after_attempts: int = 3,
    ):
        self.provider = provider
        self.pricing = pricing or PricingTable()
        self.provider_timeout_seconds = provider_timeout_seconds
        self.refund_max_attempts = refund_max_attempts
        self.refund_backoff_seconds = refund_backoff_seconds
        self.refund_backoff_max_seconds = refund_backoff_max_seconds
        self.critical_after_attempts = critical_after_attempts
        self._resolutions: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, provider: CapabilityProvider, config: ThinkLabConfig) -> "ActionGateway":
        return cls(
            provider,
            PricingTable(config.pricing),
            provider_timeout_seconds=config.provider.timeout_seconds,
            refund_max_attempts=config.ledger.refund_max_attempts,
            refund_backoff_seconds=config.ledger.refund_backoff_seconds,
            refund_backoff_max_seconds=config.ledger.refund_backoff_max_seconds,
        )

    def reconfigured(self, config: ThinkLabConfig) -> "ActionGateway":
        """New pricing and limits over the same provider and pending resolutions."""
        gateway = ActionGateway.from_config(self.provider, config)
        gateway._resolutions = self._resolutions
        return gateway

    async def perform_action(
        self,
        account_id: str,
        action_kind: ActionKind | str,
        payload: Any,
        *,
        project_id: str | None = None,
        metadata: dict | None = None,
    ) -> ActionResult:
        kind = parse_action_kind(action_kind)
        cost = self.pricing.cost(kind)
        normalized = validate_action_input(kind, payload)

        reservation = asyncio.ensure_future(
            asyncio.to_thread(
                store.reserve,
                account_id,
                kind,
                cost,
                input=normalized,
                project_id=project_id,
                metadata=metadata,
            )
        )
        try:
            record = await asyncio.shield(reservation)
        except asyncio.CancelledError:
            # The worker thread may still debit after the caller is gone.
            logger.warning("Action cancelled while reserving credits", account_id=account_id, action_kind=str(kind))
            await self._run_to_completion(self._release_abandoned(reservation))
            raise

        try:
            output = await asyncio.wait_for(
                self.provider.invoke(kind, normalized),
                timeout=self.provider_timeout_seconds,
            )
        except asyncio.CancelledError:
            logger.warning("Action cancelled while calling provider", account_id=account_id, record_id=record.record_id)
            await self._run_to_completion(self._compensate(record, "Request cancelled by caller"))
            raise
        except Exception as exc:
            if isinstance(exc, TimeoutError):
                reason = f"Provider timed out after {self.provider_timeout_seconds}s"
            else:
                reason = f"Provider error: {exc}"
            logger.warning(
                "Provider call failed",
                account_id=account_id,
                record_id=record.record_id,
                action_kind=str(kind),
                error=reason,
            )
            await self._run_to_completion(self._compensate(record, reason))
            if isinstance(exc, ProviderFailure):
                raise
            raise ProviderFailure(reason, action_kind=str(kind)) from exc

        if not isinstance(output, dict):
            reason = f"Provider returned {type(output).__name__}, expected an object"
            await self._run_to_completion(self._compensate(record, reason))
            raise ProviderFailure(reason, action_kind=str(kind))

        await self._run_to_completion(asyncio.to_thread(store.commit, record.record_id, output))
        return ActionResult(record_id=record.record_id, action_kind=kind, output=output, credits_charged=cost)

    async def _run_to_completion(self, work: Awaitable[Any]) -> Any:
        """Await `work` so that cancelling the caller cannot abandon it."""
        task = asyncio.ensure_future(work)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.done():
                self._resolutions.add(task)
                task.add_done_callback(self._resolutions.discard)
            raise

    async def drain(self) -> None:
        """Wait for resolutions still running after their caller went away."""
        while self._resolutions:
            await asyncio.gather(*list(self._resolutions), return_exceptions=True)

    async def _release_abandoned(self, reservation: asyncio.Future) -> None:
        """Refund a reservation that lands after its caller was cancelled."""
        try:
            record = await reservation
        except LedgerError as exc:
            logger.info("Abandoned reservation was rejected", code=exc.code)
            return
        await self._compensate(record, "Request cancelled by caller")

    async def _compensate(self, record: ActionRecord, reason: str) -> None:
        try:
            await asyncio.to_thread(store.mark_failed, record.record_id, reason)
        except InvalidStateTransition:
            raise
        except Exception as exc:
            # The refund can still start from RESERVED.
            logger.warning("Could not mark action failed", record_id=record.record_id, error=str(exc))
        await self._refund_with_retry(record, reason)

    async def _refund_with_retry(self, record: ActionRecord, reason: str) -> None:
        attempt = 0
        delay = self.refund_backoff_seconds
        while True:
            attempt += 1
            try:
                await asyncio.to_thread(
                    store.refund,
                    record.record_id,
                    reason=reason,
                    initiated_by=RefundInitiator.GATEWAY,
                )
            except InvalidStateTransition:
                raise
            except Exception as exc:
                log = logger.critical if attempt >= self.critical_after_attempts else logger.warning
                log(
                    "Refund attempt failed",
                    account_id=record.account_id,
                    record_id=record.record_id,
                    attempt=attempt,
                    error=str(exc),
                )
                if self.refund_max_attempts is not None and attempt >= self.refund_max_attempts:
                    logger.critical(
                        "Refund abandoned; record left for reconciliation sweep",
                        account_id=record.account_id,
                        record_id=record.record_id,
                        attempts=attempt,
                    )
                    raise ReconciliationRequired(
                        record.record_id,
                        account_id=record.account_id,
                        attempts=attempt,
                        last_error=str(exc),
                    ) from exc
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.refund_backoff_max_seconds)
                continue

            if attempt > 1:
                logger.info("Refund succeeded after retry", record_id=record.record_id, attempts=attempt)
            return
