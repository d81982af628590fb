"""Utility modules."""

from fleetdispatch.utils.geo import haversine_km
from fleetdispatch.utils.logging import LifecycleLogger, get_logger, setup_logging

__all__ = ["LifecycleLogger", "get_logger", "haversine_km", "setup_logging"]
