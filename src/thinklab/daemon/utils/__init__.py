"""ThinkLab daemon utilities: logging, config, invariants, metrics.

Individual modules are imported directly by consumers, e.g.:
    from ..utils.logging_config import StructuredLogger
    from ..utils.config_loader import config_loader

metrics imports the db package, which imports invariants from here, so
only modules with zero db dependencies are re-exported eagerly.
"""

from .logging_config import setup_logging, StructuredLogger, JSONFormatter
from .config_loader import config_loader, ConfigLoader, ThinkLabConfig, LedgerSettings, ProviderSettings
from .invariants import run_all_checks, InvariantResult

__all__ = [
    "setup_logging", "StructuredLogger", "JSONFormatter",
    "config_loader", "ConfigLoader", "ThinkLabConfig", "LedgerSettings", "ProviderSettings",
    "run_all_checks", "InvariantResult",
]
