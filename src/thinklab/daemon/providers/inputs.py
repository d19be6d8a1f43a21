"""Per-action input schemas, validated before any credits are reserved."""

from __future__ import annotations

from typing import Any, Dict, List, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..errors import InvalidActionInput
from ..pricing import ActionKind


class _ActionInput(BaseModel):
    # Web clients send camelCase (maxTokens, analysisType); both spellings validate.
    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)


class TextGenerationInput(_ActionInput):
    prompt: str = Field(..., min_length=1, max_length=20_000)
    max_tokens: int = Field(1000, ge=1, le=4096)


class ImageGenerationInput(_ActionInput):
    prompt: str = Field(..., min_length=1, max_length=4000)


class CodeGenerationInput(_ActionInput):
    prompt: str = Field(..., min_length=1, max_length=20_000)
    language: str = Field("python", min_length=1, max_length=40)


class DataAnalysisInput(_ActionInput):
    data: Any
    analysis_type: str = Field("descriptive", min_length=1, max_length=80)


class TextSummarizationInput(_ActionInput):
    text: str = Field(..., min_length=1, max_length=100_000)


class SeoOptimizationInput(_ActionInput):
    content: str = Field(..., min_length=1, max_length=100_000)
    keywords: List[str] = Field(default_factory=list, max_length=50)


INPUT_MODELS: Dict[ActionKind, Type[_ActionInput]] = {
    ActionKind.TEXT_GENERATION: TextGenerationInput,
    ActionKind.IMAGE_GENERATION: ImageGenerationInput,
    ActionKind.CODE_GENERATION: CodeGenerationInput,
    ActionKind.DATA_ANALYSIS: DataAnalysisInput,
    ActionKind.TEXT_SUMMARIZATION: TextSummarizationInput,
    ActionKind.SEO_OPTIMIZATION: SeoOptimizationInput,
}


def validate_action_input(action_kind: ActionKind, payload: Any) -> dict:
    """Return the normalized input dict or raise InvalidActionInput."""
    if not isinstance(payload, dict):
        raise InvalidActionInput(str(action_kind), "input must be a JSON object")
    try:
        model = INPUT_MODELS[action_kind].model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "input"
        raise InvalidActionInput(str(action_kind), f"{location}: {first.get('msg', 'invalid')}") from None
    return model.model_dump()
