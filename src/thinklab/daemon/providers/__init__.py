"""External capability providers and per-action input validation."""

from .base import CapabilityProvider
from .inputs import INPUT_MODELS, validate_action_input
from .openai_compat import OpenAIProvider

__all__ = [
    "CapabilityProvider",
    "INPUT_MODELS",
    "validate_action_input",
    "OpenAIProvider",
]
