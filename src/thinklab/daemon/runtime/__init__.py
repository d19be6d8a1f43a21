"""Runtime safety nets: reconciliation of stale reservations."""

from .recovery import reconcile_stale_reservations, SWEEP_REFUND_REASON

__all__ = ["reconcile_stale_reservations", "SWEEP_REFUND_REASON"]
