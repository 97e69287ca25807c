"""
Record types for detections, verifications and their audit trail.

Stored documents are plain dicts keyed by the dataclass field names; each
record type converts with ``to_dict()`` / ``from_dict()``. Derived results
(statistics, chart buckets, pages) are dataclasses that are never persisted.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar

from .errors import ValidationError

T = TypeVar("T")


class VerificationStatus(str, Enum):
    """Verification status (mutually exclusive lifecycle)."""

    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"

    # Written by an older reviewer client. Readable, never written.
    NOT_PEST = "not pest"

    @classmethod
    def writable(cls) -> List["VerificationStatus"]:
        return [cls.PENDING, cls.VERIFIED, cls.REJECTED]

    @classmethod
    def parse(cls, value: Any, allow_legacy: bool = False) -> "VerificationStatus":
        """Coerce a raw value into a status, raising ValidationError.

        Stored records pass ``allow_legacy=True`` so that "not pest" entries
        still load; new writes only accept the three lifecycle statuses.
        """
        allowed = list(cls) if allow_legacy else cls.writable()
        if isinstance(value, cls):
            status = value
        else:
            try:
                status = cls(str(value).strip().lower())
            except ValueError:
                status = None
        if status not in allowed:
            expected = ", ".join(s.value for s in allowed)
            raise ValidationError(f"Invalid status: {value!r} (expected one of {expected})")
        return status


NOT_PEST_STATUS = VerificationStatus.NOT_PEST.value

DELETED_USER_NAME = "Deleted User"


class Category(str, Enum):
    """Fixed taxonomy used to bucket verified detections for monthly charts."""

    GOOGLE_SOURCED = "google-sourced"
    UNKNOWN_SPECIES = "unknown-species"
    UNRELATED = "unrelated"
    REAL_PEST = "real-pest"


def utc_now_iso() -> str:
    """Current UTC time in the sortable ISO format used for every stored timestamp."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def new_id() -> str:
    """Fresh document id; ids generated later sort after earlier ones."""
    return f"{time.time_ns():020d}{uuid.uuid4().hex[:12]}"


def to_iso(value: datetime) -> str:
    """Format a datetime the same way as ``utc_now_iso`` (naive means UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (including a trailing ``Z``), epoch seconds and
    datetimes. Returns None for missing or unparseable values.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


@dataclass
class Detection:
    """One analyzed image/event produced by the external analysis pipeline."""

    id: str
    conf_score: float = 0.0
    cur_veri_status: str = VerificationStatus.PENDING.value
    input_image_url: str = ""
    pred_image_url: str = ""
    pest_type: str = ""
    scientific_name: Optional[str] = None
    timestamp: Optional[str] = None
    user_id: str = ""

    # Location metadata
    image_region: Optional[str] = None
    user_region: Optional[str] = None
    image_lat: Optional[float] = None
    image_long: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Detection":
        return cls(**_known_fields(cls, data))


@dataclass
class Verification:
    """A reviewer's judgment on a detection; one active record per detection."""

    id: str
    pred_id: str
    status: VerificationStatus
    verifier_id: str
    verifier_name: Optional[str] = None
    confidence: float = 0.0
    notes: Optional[str] = None
    category: Optional[str] = None
    correct_sci_name: Optional[str] = None
    timestamp: Optional[str] = None
    can_reuse_data: bool = False
    needs_expert_review: bool = False
    pred_image_url: Optional[str] = None
    input_image_url: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Verification":
        values = _known_fields(cls, data)
        values["status"] = VerificationStatus.parse(values.get("status"), allow_legacy=True)
        return cls(**values)


@dataclass(frozen=True)
class VerificationHistory:
    """Immutable audit-log entry recording one verification mutation."""

    id: str
    pred_id: str
    previous_status: VerificationStatus
    new_status: VerificationStatus
    changed_by: str
    changed_at: str
    reason: str = ""

    def to_dict(self) -> dict:
        data = asdict(self)
        data["previous_status"] = self.previous_status.value
        data["new_status"] = self.new_status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationHistory":
        values = _known_fields(cls, data)
        values["previous_status"] = VerificationStatus.parse(
            values.get("previous_status"), allow_legacy=True
        )
        values["new_status"] = VerificationStatus.parse(values.get("new_status"), allow_legacy=True)
        return cls(**values)


@dataclass
class VerificationUpdate:
    """
    Explicit partial update for a Verification.

    Only keys present in ``values`` are applied; each one overwrites the stored
    value. ``None`` is allowed for nullable fields and clears them. Identity
    fields (``id``, ``pred_id``, ``timestamp``) cannot be updated.
    """

    values: Dict[str, Any] = field(default_factory=dict)

    UPDATABLE = {
        "status": (str, VerificationStatus),
        "verifier_id": (str,),
        "verifier_name": (str,),
        "confidence": (int, float),
        "notes": (str,),
        "category": (str,),
        "correct_sci_name": (str,),
        "can_reuse_data": (bool,),
        "needs_expert_review": (bool,),
        "pred_image_url": (str,),
        "input_image_url": (str,),
    }
    NULLABLE = {
        "verifier_name",
        "notes",
        "category",
        "correct_sci_name",
        "pred_image_url",
        "input_image_url",
    }
    PROTECTED = {"id", "pred_id", "timestamp"}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "VerificationUpdate":
        """Validate raw update keys and values."""
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValidationError("Updates must be an object of field values")

        values: Dict[str, Any] = {}
        for key, value in data.items():
            if key in cls.PROTECTED:
                raise ValidationError(f"Field cannot be updated: {key}")
            if key not in cls.UPDATABLE:
                raise ValidationError(f"Unknown verification field: {key}")

            if value is None:
                if key not in cls.NULLABLE:
                    raise ValidationError(f"Field cannot be null: {key}")
                values[key] = None
                continue

            expected = cls.UPDATABLE[key]
            # bool is an int subclass; keep numeric fields numeric only
            if isinstance(value, bool) and bool not in expected:
                raise ValidationError(f"Invalid value for {key}: {value!r}")
            if not isinstance(value, expected):
                raise ValidationError(f"Invalid value for {key}: {value!r}")

            if key == "status":
                value = VerificationStatus.parse(value)
            values[key] = value

        return cls(values=values)

    @property
    def status(self) -> Optional[VerificationStatus]:
        return self.values.get("status")

    def apply(self, verification: Verification) -> Verification:
        """Shallow-merge the update onto a copy of ``verification``."""
        merged = Verification.from_dict(verification.to_dict())
        for key, value in self.values.items():
            setattr(merged, key, value)
        return merged


@dataclass
class User:
    """Dashboard user; only the display name is used here."""

    id: str
    name: str = DELETED_USER_NAME
    account_status: str = "active"
    email: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "User":
        return cls(**_known_fields(cls, data))


@dataclass
class VeriStats:
    """Verification counts by status; ``total`` always equals the bucket sum."""

    pending: int = 0
    verified: int = 0
    rejected: int = 0
    not_pest: Optional[int] = None

    @property
    def total(self) -> int:
        return self.pending + self.verified + self.rejected + (self.not_pest or 0)

    def to_dict(self) -> dict:
        data = {
            "total": self.total,
            "pending": self.pending,
            "verified": self.verified,
            "rejected": self.rejected,
        }
        if self.not_pest is not None:
            data["not_pest"] = self.not_pest
        return data


@dataclass
class CategoryChartData:
    """Per-category counts for one calendar month."""

    month: str
    counts: Dict[str, int] = field(
        default_factory=lambda: {category.value: 0 for category in Category}
    )

    def to_dict(self) -> dict:
        return {"month": self.month, **self.counts}


@dataclass
class GeographicCoverage:
    state: str
    full_name: str
    count: int
    percentage: float

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ChartPoint:
    timestamp: str
    value: int

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Page(Generic[T]):
    """One page of cursor-paginated records."""

    items: List[T]
    next_cursor: Optional[str]
    limit: int
    total_count: Optional[int] = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


__all__ = [
    "VerificationStatus",
    "NOT_PEST_STATUS",
    "DELETED_USER_NAME",
    "Category",
    "utc_now_iso",
    "new_id",
    "to_iso",
    "parse_timestamp",
    "Detection",
    "Verification",
    "VerificationHistory",
    "VerificationUpdate",
    "User",
    "VeriStats",
    "CategoryChartData",
    "GeographicCoverage",
    "ChartPoint",
    "Page",
]
