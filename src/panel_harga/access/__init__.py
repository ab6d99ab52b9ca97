"""Tiered read access and subscription reconciliation."""

from panel_harga.access.gateway import TierGateway, history_statistics
from panel_harga.access.subscriptions import SubscriptionReconciler

__all__ = [
    "SubscriptionReconciler",
    "TierGateway",
    "history_statistics",
]
