"""Application services."""

from .pending import PendingAggregator, PendingReport, fan_out, get_pending_aggregator
from .updates import UpdateOrchestrator, get_update_orchestrator

__all__ = [
    "PendingAggregator",
    "PendingReport",
    "UpdateOrchestrator",
    "fan_out",
    "get_pending_aggregator",
    "get_update_orchestrator",
]
