"""
Read-side queries for detections.

Detections are produced by the external analysis pipeline; this module only
reads them and resolves the submitter's display name from ``users``.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from .errors import NotFoundError, ValidationError
from .models import (
    DELETED_USER_NAME,
    Detection,
    Page,
    VerificationStatus,
    parse_timestamp,
    to_iso,
)
from .pagination import DEFAULT_LIMIT, CursorPaginator, validate_limit
from .storage.base import DETECTIONS
from .storage.records import RecordStore

logger = logging.getLogger(__name__)


class DetectionQueries:
    """Detection listing, detail, recent feed, map points and species list."""

    def __init__(self, records: RecordStore, paginator: Optional[CursorPaginator] = None):
        self.records = records
        self.paginator = paginator or CursorPaginator(records.store)

    def _with_user_names(self, detections: List[Detection]) -> List[Dict[str, Any]]:
        users = self.records.get_users(d.user_id for d in detections)
        results = []
        for detection in detections:
            data = detection.to_dict()
            user = users.get(detection.user_id)
            data["user_name"] = user.name if user else DELETED_USER_NAME
            results.append(data)
        return results

    def get_detection(self, detection_id: str) -> Dict[str, Any]:
        """Detection by id with ``user_name``; NotFoundError if absent."""
        detection = self.records.get_detection(detection_id)
        if detection is None:
            raise NotFoundError(f"Detection not found: {detection_id}")
        return self._with_user_names([detection])[0]

    def list_detections(
        self,
        limit: int = DEFAULT_LIMIT,
        cursor: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Page[Dict[str, Any]]:
        """
        One page of detections, newest first.

        Args:
            limit: Page size
            cursor: Id of the last detection of the previous page
            status: Only detections whose current verification status matches
        """
        filters = []
        if status:
            filters.append(("cur_veri_status", "==", VerificationStatus.parse(status).value))

        page = self.paginator.paginate(DETECTIONS, limit=limit, cursor=cursor, filters=filters)
        detections = [Detection.from_dict(d) for d in page.items]
        return Page(
            items=self._with_user_names(detections),
            next_cursor=page.next_cursor,
            limit=page.limit,
        )

    def get_recent_detections(self, limit: int = 100, days: int = 7) -> List[Dict[str, Any]]:
        """Detections from the last ``days`` days, newest first."""
        limit = validate_limit(limit)
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise ValidationError(f"Days must be a positive integer, got {days!r}")

        since = to_iso(datetime.now(timezone.utc) - timedelta(days=days))
        detections = self.records.find_detections(
            filters=[("timestamp", ">=", since)], limit=limit
        )
        logger.debug(f"Found {len(detections)} detections since {since}")
        return self._with_user_names(detections)

    def get_map_detections(
        self,
        start: Optional[Any] = None,
        end: Optional[Any] = None,
        scientific_name: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Detections for the map view, newest first.

        Args:
            start: Earliest timestamp to include (ISO string or datetime)
            end: Latest timestamp to include
            scientific_name: Only detections identified as this species
            status: Only detections with this current verification status

        Each result carries ``user_name`` and ``has_location``, which is False
        when the image carried no usable coordinates.
        """
        filters = []
        bounds = {}
        for name, value in (("start", start), ("end", end)):
            if value is None or value == "":
                continue
            moment = parse_timestamp(value)
            if moment is None:
                raise ValidationError(f"Invalid {name} date: {value!r}")
            bounds[name] = moment

        if "start" in bounds and "end" in bounds and bounds["start"] > bounds["end"]:
            raise ValidationError("Start date must not be after end date")
        if "start" in bounds:
            filters.append(("timestamp", ">=", to_iso(bounds["start"])))
        if "end" in bounds:
            filters.append(("timestamp", "<=", to_iso(bounds["end"])))
        if scientific_name:
            filters.append(("scientific_name", "==", scientific_name))
        if status:
            filters.append(("cur_veri_status", "==", VerificationStatus.parse(status).value))

        results = self._with_user_names(self.records.find_detections(filters=filters))
        for data in results:
            # 0 is what the mobile client sends when it has no fix
            data["has_location"] = bool(data["image_lat"]) and bool(data["image_long"])
        logger.debug(f"Map query matched {len(results)} detections")
        return results

    def get_detected_species(self) -> List[str]:
        """Distinct scientific names across all detections, sorted."""
        names = {
            detection.scientific_name.strip()
            for detection in self.records.find_detections()
            if detection.scientific_name and detection.scientific_name.strip()
        }
        return sorted(names)
