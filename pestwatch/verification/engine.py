"""
Verification Engine for Reviewed Detections

Owns the lifecycle of a verification record and its append-only history.

Features:
- Create one verification per detection
- Shallow-merge updates with a full audit trail
- Keep the detection's current status in sync
- Query verifications by status and history by detection
- Paginated history listing joined with current verification state
"""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Union

from ..errors import NotFoundError, StoreError, ValidationError
from ..models import (
    Page,
    Verification,
    VerificationHistory,
    VerificationStatus,
    VerificationUpdate,
    new_id,
    utc_now_iso,
)
from ..pagination import DEFAULT_LIMIT, CursorPaginator
from ..storage.base import VERIFICATION_HISTORY
from ..storage.records import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class VerificationHistoryDetail:
    """History entry joined with the detection's current verification."""

    id: str
    pred_id: str
    previous_status: str
    new_status: str
    changed_by: str
    changed_at: str
    reason: str
    current_status: str
    category: str
    suggested_name: Optional[str]
    needs_expert_review: bool
    notes: str
    verifier_name: str
    verification_id: str

    def to_dict(self) -> dict:
        return asdict(self)


class VerificationEngine:
    """
    Engine for managing the detection verification workflow.

    Every update writes the merged verification, appends exactly one history
    entry and, when the status changes, mirrors it onto the detection. These
    writes share one store transaction.
    """

    REQUIRED_FIELDS = ["pred_id", "status", "verifier_id"]

    CREATE_FIELDS = {
        "pred_id",
        "status",
        "verifier_id",
        *VerificationUpdate.UPDATABLE,
    }

    def __init__(self, records: RecordStore, paginator: Optional[CursorPaginator] = None):
        """
        Initialize verification engine.

        Args:
            records: Record store adapter
            paginator: Cursor paginator for the history listing
        """
        self.records = records
        self.paginator = paginator or CursorPaginator(records.store)

        logger.info("Verification engine initialized")

    def create_verification(self, data: Dict[str, Any]) -> str:
        """
        Create the verification record for a detection.

        Args:
            data: Verification payload; requires pred_id, status, verifier_id

        Returns:
            New verification id
        """
        if not isinstance(data, dict):
            raise ValidationError("Verification payload must be an object")

        unknown = sorted(set(data) - self.CREATE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown verification fields: {', '.join(unknown)}")

        for field_name in self.REQUIRED_FIELDS:
            value = data.get(field_name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise ValidationError(f"Missing required field: {field_name}")

        status = VerificationStatus.parse(data["status"])
        optional = VerificationUpdate.from_dict(
            {k: v for k, v in data.items() if k not in ("pred_id", "status", "verifier_id")}
        )
        pred_id = str(data["pred_id"])

        verification = optional.apply(
            Verification(
                id=new_id(),
                pred_id=pred_id,
                status=status,
                verifier_id=str(data["verifier_id"]),
                timestamp=utc_now_iso(),
            )
        )

        try:
            with self.records.transaction():
                existing = self.records.find_verifications(pred_id=pred_id)
                if existing:
                    raise ValidationError(
                        f"Detection {pred_id} already has verification {existing[0].id}; "
                        "update it instead"
                    )

                verification_id = self.records.insert_verification(verification.to_dict())

                if not self.records.set_detection_status(pred_id, status.value):
                    logger.warning(f"Detection not found for new verification: {pred_id}")
        except StoreError:
            logger.error(f"Failed to create verification for {pred_id}", exc_info=True)
            raise

        logger.info(
            f"Created verification {verification_id} for {pred_id} (status: {status.value})"
        )
        return verification_id

    def update_verification(
        self,
        verification_id: str,
        updates: Union[Dict[str, Any], VerificationUpdate, None],
        changed_by: str,
        reason: str = "",
    ) -> Verification:
        """
        Update verification record and append an audit entry.

        Args:
            verification_id: Verification identifier
            updates: Partial field updates (present keys overwrite)
            changed_by: Identity of the reviewer making the change
            reason: Free-text reason (may be empty)

        Returns:
            The merged verification as stored
        """
        if not isinstance(updates, VerificationUpdate):
            updates = VerificationUpdate.from_dict(updates)
        if not isinstance(reason, str):
            raise ValidationError("Reason must be a string")
        if not isinstance(changed_by, str):
            raise ValidationError("changed_by must be a string")

        try:
            with self.records.transaction():
                current = self.records.get_verification(verification_id)
                if current is None:
                    raise NotFoundError(f"Verification not found: {verification_id}")

                previous_status = current.status
                merged = updates.apply(current)
                merged.timestamp = utc_now_iso()
                self.records.save_verification(merged)

                changed_at = utc_now_iso()
                self.records.append_history(
                    VerificationHistory(
                        id=new_id(),
                        pred_id=current.pred_id,
                        previous_status=previous_status,
                        new_status=merged.status,
                        changed_by=changed_by,
                        changed_at=changed_at,
                        reason=reason,
                    ).to_dict()
                )

                if merged.status != previous_status:
                    if not self.records.set_detection_status(current.pred_id, merged.status.value):
                        logger.warning(f"Detection not found for verification: {current.pred_id}")
        except StoreError:
            logger.error(f"Failed to update verification {verification_id}", exc_info=True)
            raise

        logger.info(
            f"Updated verification: {verification_id} "
            f"({previous_status.value} -> {merged.status.value}, by {changed_by})"
        )
        return merged

    def get_verification(self, verification_id: str) -> Verification:
        """Get verification by id, filling image URLs from its detection."""
        verification = self.records.get_verification(verification_id)
        if verification is None:
            raise NotFoundError(f"Verification not found: {verification_id}")

        if not verification.pred_image_url or not verification.input_image_url:
            detection = self.records.get_detection(verification.pred_id)
            if detection:
                verification.pred_image_url = (
                    verification.pred_image_url or detection.pred_image_url
                )
                verification.input_image_url = (
                    verification.input_image_url or detection.input_image_url
                )
        return verification

    def get_verification_for_detection(self, pred_id: str) -> Optional[Verification]:
        """The current verification for a detection, if any."""
        matches = self.records.find_verifications(pred_id=pred_id)
        return matches[0] if matches else None

    def get_verifications_by_status(
        self, status: Union[str, VerificationStatus]
    ) -> List[Verification]:
        """Verifications with the given status, most recent first."""
        status = VerificationStatus.parse(status)
        return self.records.find_verifications(status=status.value)

    def get_verification_history(self, pred_id: str) -> List[VerificationHistory]:
        """Full audit trail for a detection, oldest first."""
        return self.records.history_for(pred_id)

    def get_history_page(
        self, limit: int = DEFAULT_LIMIT, cursor: Optional[str] = None
    ) -> Page[VerificationHistoryDetail]:
        """
        Get one page of history entries, newest first.

        Each entry is joined with the current verification of its detection.
        """
        page = self.paginator.paginate(VERIFICATION_HISTORY, limit=limit, cursor=cursor)

        current_by_pred: Dict[str, Optional[Verification]] = {}
        details = []
        for entry in page.items:
            pred_id = entry["pred_id"]
            if pred_id not in current_by_pred:
                current_by_pred[pred_id] = self.get_verification_for_detection(pred_id)
            current = current_by_pred[pred_id]

            details.append(
                VerificationHistoryDetail(
                    id=entry["id"],
                    pred_id=pred_id,
                    previous_status=entry["previous_status"],
                    new_status=entry["new_status"],
                    changed_by=entry["changed_by"],
                    changed_at=entry["changed_at"],
                    reason=entry.get("reason", ""),
                    current_status=current.status.value if current else entry["new_status"],
                    category=(current.category if current else None) or "",
                    suggested_name=current.correct_sci_name if current else None,
                    needs_expert_review=current.needs_expert_review if current else False,
                    notes=(current.notes if current else None) or "",
                    verifier_name=(
                        (current.verifier_name if current else None) or entry["changed_by"]
                    ),
                    verification_id=current.id if current else "",
                )
            )

        return Page(
            items=details,
            next_cursor=page.next_cursor,
            limit=page.limit,
            total_count=self.records.count_history(),
        )
