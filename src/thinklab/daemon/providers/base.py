"""External capability provider contract."""

from __future__ import annotations

from typing import Any, Protocol

from ..pricing import ActionKind


class CapabilityProvider(Protocol):
    """Opaque, fallible, latency-unbounded generation capability.

    `invoke` is called at most once per reservation. Any exception it raises
    is treated as a provider failure and the reservation is refunded.
    """

    async def invoke(self, action_kind: ActionKind, payload: dict[str, Any]) -> dict[str, Any]:
        ...

    async def aclose(self) -> None:
        ...
