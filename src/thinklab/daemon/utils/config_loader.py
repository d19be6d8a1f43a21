import os
from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from ..errors import UnknownActionKind
from ..pricing import DEFAULT_PRICES, PricingTable, parse_action_kind
from .logging_config import StructuredLogger

logger = StructuredLogger(__name__)

# --- V1 Schema Models ---


class ProviderSettings(BaseModel):
    base_url: str = "https://api.openai.com/v1"
    api_key_env: str = "OPENAI_API_KEY"
    text_model: str = "gpt-4o"
    image_model: str = "dall-e-3"
    image_size: str = "1024x1024"
    max_tokens: int = Field(1000, ge=1)
    timeout_seconds: float = Field(60.0, gt=0)


class LedgerSettings(BaseModel):
    default_starting_balance: int = Field(10, ge=0)
    stale_after_seconds: int = Field(300, ge=1)
    sweep_max_attempts: int = Field(5, ge=1)
    refund_max_attempts: Optional[int] = Field(None, ge=1)
    refund_backoff_seconds: float = Field(0.5, ge=0)
    refund_backoff_max_seconds: float = Field(30.0, ge=0)
    history_limit_max: int = Field(200, ge=1)


class ThinkLabConfig(BaseModel):
    version: int = Field(1, ge=1, le=1)
    pricing: Dict[str, int] = Field(default_factory=lambda: {str(k): v for k, v in DEFAULT_PRICES.items()})
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)

    @field_validator("pricing")
    @classmethod
    def validate_pricing(cls, v: Dict[str, int]) -> Dict[str, int]:
        merged = {str(k): c for k, c in DEFAULT_PRICES.items()}
        for kind, cost in v.items():
            try:
                resolved = parse_action_kind(kind)
            except UnknownActionKind:
                raise ValueError(f"Unknown action kind '{kind}' in pricing") from None
            if int(cost) <= 0:
                raise ValueError(f"Price for '{kind}' must be positive")
            merged[str(resolved)] = int(cost)
        return merged

    @model_validator(mode="after")
    def validate_sweep_threshold(self) -> "ThinkLabConfig":
        # A live provider call must never look stale to the sweep.
        if self.ledger.stale_after_seconds <= self.provider.timeout_seconds:
            raise ValueError(
                "ledger.stale_after_seconds must exceed provider.timeout_seconds "
                f"({self.ledger.stale_after_seconds} <= {self.provider.timeout_seconds})"
            )
        return self


# --- Config Loader (Atomic Reload) ---


class ConfigLoader:
    def __init__(self):
        self.config_dir = Path(os.getenv("THINKLAB_CONFIG_DIR", str(Path.home() / ".thinklab" / "config")))
        self.config_file = self.config_dir / "thinklab.yaml"
        self.config: Optional[ThinkLabConfig] = None

    def load_config(self) -> ThinkLabConfig:
        """
        Loads and validates configuration from thinklab.yaml.
        ATOMIC: On failure, previous config is preserved.
        A missing file yields built-in defaults.
        """
        if not self.config_file.exists():
            if self.config is None:
                logger.info("Config file not found, using defaults", path=str(self.config_file))
                self.config = ThinkLabConfig()
            return self.config

        try:
            with open(self.config_file, "r") as f:
                raw_data = yaml.safe_load(f) or {}

            logger.info("Loading configuration", path=str(self.config_file))

            # Validate into temporary; never touch self.config until success
            new_config = ThinkLabConfig(**raw_data)

            self.config = new_config

            logger.info(
                "Configuration loaded successfully",
                version=self.config.version,
                pricing=self.config.pricing,
            )
            return self.config

        except Exception as e:
            logger.error("Configuration validation failed", error=str(e))
            if self.config is not None:
                logger.warning("Keeping previous valid configuration")
                raise ValueError(f"Invalid configuration (previous config retained): {e}")
            else:
                logger.critical("No previous configuration to fall back to")
                raise ValueError(f"Invalid configuration (no fallback): {e}")

    def get_config(self) -> ThinkLabConfig:
        if not self.config:
            self.load_config()
        return self.config

    def pricing_table(self) -> PricingTable:
        return PricingTable(self.get_config().pricing)

    def ledger_settings(self) -> LedgerSettings:
        return self.get_config().ledger

    def provider_settings(self) -> ProviderSettings:
        return self.get_config().provider


config_loader = ConfigLoader()
