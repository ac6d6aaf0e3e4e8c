"""Utility modules."""

from mealhold.utils.logging import setup_logging
from mealhold.utils.time import now_ms

__all__ = ["setup_logging", "now_ms"]
