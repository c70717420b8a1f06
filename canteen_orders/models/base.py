"""
Base data models
Shared model base classes and field helpers
"""

from pydantic import BaseModel
from datetime import datetime, timezone
from typing import Iterable, Optional, FrozenSet, Union


class TimestampMixin(BaseModel):
    """Timestamp fields"""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BaseEntity(BaseModel):
    """Base entity model"""

    model_config = {"from_attributes": True, "validate_assignment": True}


def normalize_tags(raw: Union[str, Iterable[str], None]) -> FrozenSet[str]:
    """
    Normalize allergen tags into a set

    Accepts the stored comma-separated form ("nuts, Dairy") or any iterable
    of tags; entries are trimmed and case-folded, blanks dropped.
    """
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        raw = raw.split(",")
    return frozenset(tag.strip().casefold() for tag in raw if tag and tag.strip())


def serialize_tags(tags: Iterable[str]) -> Optional[str]:
    """Store form of a tag set; None when empty"""
    ordered = sorted(tags)
    return ",".join(ordered) if ordered else None


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in TIMESTAMP columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
