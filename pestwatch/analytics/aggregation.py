"""
Aggregation Engine for Dashboard Statistics

Read-only statistics recomputed on demand from detections and verifications:
- Verification counts by status
- Category counts per calendar month
- Geographic coverage by Australian state
- Monthly detection volume for the timeline chart

Results can be served through an injected TTLCache.
"""

import calendar
import logging
from collections import Counter
from typing import Any, Callable, Dict, List, Optional

from ..cache import TTLCache
from ..errors import StoreError, ValidationError
from ..models import (
    NOT_PEST_STATUS,
    Category,
    CategoryChartData,
    ChartPoint,
    GeographicCoverage,
    VerificationStatus,
    VeriStats,
    parse_timestamp,
)
from ..storage.records import RecordStore
from .regions import AUSTRALIAN_STATES, normalize_state

logger = logging.getLogger(__name__)

MONTH_NAMES = [calendar.month_abbr[m] for m in range(1, 13)]


def _validate_year(year: Any) -> int:
    if isinstance(year, bool) or not isinstance(year, int) or not 1000 <= year <= 9999:
        raise ValidationError(f"Year must be a four-digit integer, got {year!r}")
    return year


class AggregationEngine:
    """
    Engine for derived dashboard statistics.

    Never writes; depends only on the record store.
    """

    def __init__(self, records: RecordStore, cache: Optional[TTLCache] = None):
        """
        Initialize aggregation engine.

        Args:
            records: Record store adapter
            cache: Optional read-through cache for results
        """
        self.records = records
        self.cache = cache

    def _cached(self, name: str, loader: Callable[[], Any], *args: Any) -> Any:
        try:
            if self.cache is None:
                return loader()
            return self.cache.get_or_load(name, loader, *args)
        except StoreError:
            logger.error(f"Aggregation {name} failed", exc_info=True)
            raise

    def get_category_counts_by_month(self, year: int) -> List[CategoryChartData]:
        """
        Count verified categories per month of ``year``.

        A detection is counted in the (UTC) month of its own timestamp, under
        the category of its verification. Detections without a verification
        and categories outside the fixed set are not counted.

        Returns:
            Exactly 12 entries, January first
        """
        year = _validate_year(year)
        return self._cached(
            "category_counts_by_month", lambda: self._category_counts(year), year
        )

    def _category_counts(self, year: int) -> List[CategoryChartData]:
        category_by_pred: Dict[str, str] = {}
        for verification in self.records.all_verification_documents():
            pred_id = verification.get("pred_id")
            category = verification.get("category")
            if pred_id and category:
                category_by_pred[pred_id] = category

        known_categories = {c.value for c in Category}
        buckets = [CategoryChartData(month=name) for name in MONTH_NAMES]
        dropped = 0

        for detection in self.records.find_detections():
            moment = parse_timestamp(detection.timestamp)
            if moment is None or moment.year != year:
                continue

            category = category_by_pred.get(detection.id)
            if category is None:
                continue
            if category not in known_categories:
                dropped += 1
                continue

            buckets[moment.month - 1].counts[category] += 1

        if dropped:
            logger.debug(f"Dropped {dropped} detections with unknown categories for {year}")
        return buckets

    def get_geographic_coverage(self) -> List[GeographicCoverage]:
        """
        Detection counts per Australian state, largest first.

        Regions that cannot be normalized are excluded from both the counts
        and the percentage denominator.
        """
        return self._cached("geographic_coverage", self._geographic_coverage)

    def _geographic_coverage(self) -> List[GeographicCoverage]:
        counts: Counter = Counter()
        for detection in self.records.find_detections():
            state = normalize_state(detection.image_region or detection.user_region)
            if state is None:
                continue
            counts[state] += 1

        known_total = sum(counts.values())
        coverage = [
            GeographicCoverage(
                state=state,
                full_name=AUSTRALIAN_STATES[state],
                count=count,
                percentage=round(count / known_total * 100, 1),
            )
            for state, count in counts.items()
        ]
        coverage.sort(key=lambda c: (-c.count, c.state))
        return coverage

    def get_line_chart_data(self) -> List[ChartPoint]:
        """
        Monthly detection volume, oldest month first.

        Months without detections between the first and last month are
        included with value 0.
        """
        return self._cached("line_chart_data", self._line_chart_data)

    def _line_chart_data(self) -> List[ChartPoint]:
        monthly: Counter = Counter()
        for detection in self.records.find_detections():
            moment = parse_timestamp(detection.timestamp)
            if moment is None:
                continue
            monthly[(moment.year, moment.month)] += 1

        if not monthly:
            return []

        year, month = min(monthly)
        last = max(monthly)
        points = []
        while (year, month) <= last:
            points.append(
                ChartPoint(timestamp=f"{year}-{month:02d}", value=monthly.get((year, month), 0))
            )
            month += 1
            if month > 12:
                year, month = year + 1, 1
        return points

    def query_veri_stats(self) -> VeriStats:
        """
        Count verifications by status.

        Legacy "not pest" records are reported in ``not_pest``; records with
        any other unrecognized status are excluded from every count.
        """
        return self._cached("veri_stats", self._veri_stats)

    def _veri_stats(self) -> VeriStats:
        stats = VeriStats()
        for document in self.records.all_verification_documents():
            status = str(document.get("status", "")).strip().lower()
            if status == VerificationStatus.PENDING.value:
                stats.pending += 1
            elif status == VerificationStatus.VERIFIED.value:
                stats.verified += 1
            elif status == VerificationStatus.REJECTED.value:
                stats.rejected += 1
            elif status == NOT_PEST_STATUS:
                stats.not_pest = (stats.not_pest or 0) + 1
            else:
                logger.warning(
                    f"Skipping verification {document.get('id')} with unknown status: {status!r}"
                )
        return stats
