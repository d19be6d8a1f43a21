"""Action kinds and the static pricing table."""

from __future__ import annotations

from enum import StrEnum
from typing import Mapping

from .errors import UnknownActionKind


class ActionKind(StrEnum):
    TEXT_GENERATION = "text-generation"
    IMAGE_GENERATION = "image-generation"
    CODE_GENERATION = "code-generation"
    DATA_ANALYSIS = "data-analysis"
    TEXT_SUMMARIZATION = "text-summarization"
    SEO_OPTIMIZATION = "seo-optimization"


DEFAULT_PRICES: dict[ActionKind, int] = {
    ActionKind.TEXT_GENERATION: 5,
    ActionKind.IMAGE_GENERATION: 10,
    ActionKind.CODE_GENERATION: 8,
    ActionKind.DATA_ANALYSIS: 15,
    ActionKind.TEXT_SUMMARIZATION: 3,
    ActionKind.SEO_OPTIMIZATION: 12,
}


def parse_action_kind(value: str | ActionKind) -> ActionKind:
    """Resolve a wire value (`text-generation` or `text_generation`) to an ActionKind."""
    if isinstance(value, ActionKind):
        return value
    normalized = str(value or "").strip().lower().replace("_", "-")
    try:
        return ActionKind(normalized)
    except ValueError:
        raise UnknownActionKind(str(value)) from None


class PricingTable:
    """Pure lookup of action kind -> positive credit cost."""

    def __init__(self, prices: Mapping[ActionKind | str, int] | None = None):
        source = DEFAULT_PRICES if prices is None else prices
        table: dict[ActionKind, int] = {}
        for kind, cost in source.items():
            resolved = parse_action_kind(kind)
            if int(cost) <= 0:
                raise ValueError(f"Price for {resolved} must be a positive integer, got {cost}")
            table[resolved] = int(cost)
        self._prices = table

    def cost(self, action_kind: ActionKind | str) -> int:
        kind = parse_action_kind(action_kind)
        try:
            return self._prices[kind]
        except KeyError:
            raise UnknownActionKind(str(action_kind)) from None

    def kinds(self) -> list[ActionKind]:
        return list(self._prices)

    def as_dict(self) -> dict[str, int]:
        return {str(kind): cost for kind, cost in self._prices.items()}
