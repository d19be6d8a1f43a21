"""Config reload must be atomic: keep the old config on failure."""

import pytest

from thinklab.daemon.pricing import ActionKind
from thinklab.daemon.utils.config_loader import ConfigLoader, ThinkLabConfig


def _loader(tmp_path):
    loader = ConfigLoader()
    loader.config_dir = tmp_path
    loader.config_file = tmp_path / "thinklab.yaml"
    return loader


class TestConfigLoader:
    def test_missing_file_uses_defaults(self, tmp_path):
        config = _loader(tmp_path).load_config()
        assert config.pricing["text-generation"] == 5
        assert config.ledger.default_starting_balance == 10
        assert config.ledger.refund_max_attempts is None

    def test_valid_config_overrides_prices(self, tmp_path):
        loader = _loader(tmp_path)
        loader.config_file.write_text(
            """
version: 1
pricing:
  text_generation: 7
ledger:
  default_starting_balance: 25
  stale_after_seconds: 600
"""
        )
        config = loader.load_config()
        assert config.pricing["text-generation"] == 7
        # Kinds not mentioned keep their defaults.
        assert config.pricing["seo-optimization"] == 12
        assert loader.pricing_table().cost(ActionKind.TEXT_GENERATION) == 7
        assert loader.ledger_settings().default_starting_balance == 25

    def test_invalid_reload_preserves_previous(self, tmp_path):
        loader = _loader(tmp_path)
        loader.config_file.write_text("version: 1\npricing:\n  image-generation: 20\n")
        loader.load_config()

        loader.config_file.write_text("version: 1\npricing:\n  video-generation: 3\n")
        with pytest.raises(ValueError, match="previous config retained"):
            loader.load_config()
        assert loader.get_config().pricing["image-generation"] == 20

    def test_invalid_first_load_has_no_fallback(self, tmp_path):
        loader = _loader(tmp_path)
        loader.config_file.write_text("version: 1\npricing:\n  text-generation: 0\n")
        with pytest.raises(ValueError, match="no fallback"):
            loader.load_config()

    def test_sweep_threshold_must_exceed_provider_timeout(self):
        with pytest.raises(ValueError):
            ThinkLabConfig(provider={"timeout_seconds": 120}, ledger={"stale_after_seconds": 60})

    def test_shared_loader_is_isolated_per_test(self, default_config):
        assert default_config.get_config() == ThinkLabConfig()
