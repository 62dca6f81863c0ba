"""
Services module for execution tracking and healing reconciliation.
"""

from .tracking_service import TrackingService, get_tracking_service, reset_tracking_service
from .healing_reconciler import HealingEventReconciler, correlate
from .stream_multiplexer import StreamMultiplexer, ChannelNotFoundError, DASHBOARD_CHANNEL

__all__ = [
    "TrackingService",
    "get_tracking_service",
    "reset_tracking_service",
    "HealingEventReconciler",
    "correlate",
    "StreamMultiplexer",
    "ChannelNotFoundError",
    "DASHBOARD_CHANNEL"
]
