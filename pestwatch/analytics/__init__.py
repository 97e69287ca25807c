"""Dashboard statistics derived from detections and verifications."""

from .aggregation import MONTH_NAMES, AggregationEngine
from .regions import AUSTRALIAN_STATES, normalize_state

__all__ = ["AggregationEngine", "MONTH_NAMES", "AUSTRALIAN_STATES", "normalize_state"]
