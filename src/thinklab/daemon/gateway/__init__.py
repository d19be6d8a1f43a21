"""Metered action orchestration."""

from .service import ActionGateway, ActionResult

__all__ = ["ActionGateway", "ActionResult"]
