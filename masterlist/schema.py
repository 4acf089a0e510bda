"""
Task list schema: records, categories, and error kinds.

A Record is either active (is_completed=False) or completed. Categories are
kept as enum members in memory and as their canonical tag on disk.
"""
import logging
from enum import Enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

logger = logging.getLogger(__name__)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Exceptions
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class MasterListError(Exception):
    """Base class for all store errors."""
    pass


class ValidationError(MasterListError):
    """Raised on bad input: blank title, malformed reorder set."""
    pass


class NotFoundError(MasterListError):
    """Raised when an operation targets a missing record id."""
    pass


class PersistenceError(MasterListError):
    """Raised when the durable write failed (nothing was changed)."""
    pass


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Category
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Category(Enum):
    """Closed set of item categories. Value is the stored tag."""
    WORK = "Work"
    PERSONAL = "Personal"

    @classmethod
    def default(cls) -> "Category":
        return cls.PERSONAL

    @classmethod
    def parse(cls, value: Any) -> "Category":
        """Strict decode of a tag or member name. Raises ValueError."""
        if isinstance(value, cls):
            return value
        if value is None:
            raise ValueError("category is required")
        try:
            return cls(value)
        except ValueError:
            pass
        wanted = str(value).strip().lower()
        for member in cls:
            if wanted in (member.value.lower(), member.name.lower()):
                return member
        raise ValueError(f"Unknown category: {value!r}")

    @classmethod
    def from_str(cls, value: Optional[str]) -> "Category":
        """Decode a stored tag. Unknown tags fall back to the default."""
        if not value:
            return cls.default()
        try:
            return cls.parse(value)
        except ValueError:
            logger.warning("Unknown category tag %r, using %s", value, cls.default().value)
            return cls.default()

    @property
    def icon(self) -> str:
        return _CATEGORY_ICONS[self]

    @property
    def color(self) -> str:
        return _CATEGORY_COLORS[self]

    @classmethod
    def metadata(cls) -> List[Dict[str, str]]:
        """Presentation metadata for every category, in declaration order."""
        return [{"tag": c.value, "icon": c.icon, "color": c.color} for c in cls]


_CATEGORY_ICONS = {
    Category.WORK: "briefcase.fill",
    Category.PERSONAL: "person.fill",
}

_CATEGORY_COLORS = {
    Category.WORK: "blue",
    Category.PERSONAL: "purple",
}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Record
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        ts = value
    else:
        ts = datetime.fromisoformat(str(value))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class Record:
    """A single task item."""

    record_id: str
    title: str
    is_completed: bool = False
    category: Category = Category.PERSONAL
    created_at: datetime = None  # type: ignore[assignment]
    completed_at: Optional[datetime] = None
    rank: int = 0

    def __post_init__(self):
        if self.created_at is None:
            self.created_at = utc_now()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-friendly dict (ISO timestamps, category tag)."""
        return {
            "record_id": self.record_id,
            "title": self.title,
            "is_completed": self.is_completed,
            "category": self.category.value if isinstance(self.category, Category) else self.category,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "rank": self.rank,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Record":
        """Deserialize from dict. Category tags decode fail-closed."""
        return cls(
            record_id=str(data["record_id"]),
            title=data.get("title", ""),
            is_completed=bool(data.get("is_completed", False)),
            category=Category.from_str(data.get("category")),
            created_at=_parse_ts(data.get("created_at")) or utc_now(),
            completed_at=_parse_ts(data.get("completed_at")),
            rank=int(data.get("rank") or 0),
        )
