"""
Typed access to the four collections used by the dashboard.

Pure data access: converts between stored documents and model dataclasses,
no business rules.
"""

import logging
from typing import ContextManager, Iterable, List, Optional, Sequence

from ..models import Detection, User, Verification, VerificationHistory
from .base import (
    DETECTIONS,
    SORT_FIELDS,
    USERS,
    VERIFICATION_HISTORY,
    VERIFICATIONS,
    DocumentStore,
    Filter,
)

logger = logging.getLogger(__name__)


class RecordStore:
    """Record-level adapter over a DocumentStore."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def transaction(self) -> ContextManager[None]:
        return self.store.transaction()

    # Detections

    def get_detection(self, detection_id: str) -> Optional[Detection]:
        data = self.store.get(DETECTIONS, detection_id)
        return Detection.from_dict(data) if data else None

    def find_detections(
        self,
        filters: Sequence[Filter] = (),
        descending: bool = True,
        limit: Optional[int] = None,
    ) -> List[Detection]:
        docs = self.store.query(
            DETECTIONS,
            filters=filters,
            order_by=SORT_FIELDS[DETECTIONS],
            descending=descending,
            limit=limit,
        )
        return [Detection.from_dict(d) for d in docs]

    def set_detection_status(self, detection_id: str, status: str) -> bool:
        """Mirror a verification status onto its detection.

        Returns False if the detection does not exist.
        """
        if self.store.get(DETECTIONS, detection_id) is None:
            return False
        self.store.update(DETECTIONS, detection_id, {"cur_veri_status": status})
        return True

    # Verifications

    def get_verification(self, verification_id: str) -> Optional[Verification]:
        data = self.store.get(VERIFICATIONS, verification_id)
        return Verification.from_dict(data) if data else None

    def find_verifications(
        self,
        status: Optional[str] = None,
        pred_id: Optional[str] = None,
    ) -> List[Verification]:
        """Verifications matching the filters, most recent first."""
        filters: List[Filter] = []
        if status is not None:
            filters.append(("status", "==", status))
        if pred_id is not None:
            filters.append(("pred_id", "==", pred_id))

        docs = self.store.query(
            VERIFICATIONS,
            filters=filters,
            order_by=SORT_FIELDS[VERIFICATIONS],
            descending=True,
        )
        return [Verification.from_dict(d) for d in docs]

    def all_verification_documents(self) -> List[dict]:
        """Raw verification documents, including legacy statuses."""
        return self.store.query(VERIFICATIONS)

    def insert_verification(self, data: dict) -> str:
        return self.store.insert(VERIFICATIONS, data)

    def save_verification(self, verification: Verification) -> None:
        data = verification.to_dict()
        data.pop("id")
        self.store.update(VERIFICATIONS, verification.id, data)

    # Verification history (append-only)

    def append_history(self, data: dict) -> str:
        return self.store.insert(VERIFICATION_HISTORY, data)

    def history_for(self, pred_id: str) -> List[VerificationHistory]:
        """History entries for a detection, oldest first."""
        docs = self.store.query(
            VERIFICATION_HISTORY,
            filters=[("pred_id", "==", pred_id)],
            order_by=SORT_FIELDS[VERIFICATION_HISTORY],
        )
        return [VerificationHistory.from_dict(d) for d in docs]

    def count_history(self) -> int:
        return self.store.count(VERIFICATION_HISTORY)

    # Users

    def get_users(self, user_ids: Iterable[str]) -> dict:
        """Map of user id to User for the ids that exist."""
        users = {}
        for user_id in set(user_ids):
            if not user_id:
                continue
            data = self.store.get(USERS, user_id)
            if data:
                users[user_id] = User.from_dict(data)
        return users
