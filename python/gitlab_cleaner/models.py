"""
Data structures for container repositories and their tags.

All entities are transient snapshots of GitLab API payloads, built once per
command invocation and never cached across runs.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


def parse_timestamp(timestamp_str) -> Optional[datetime]:
    """Parse a GitLab timestamp into a timezone aware datetime.

    Args:
        timestamp_str: ISO format timestamp string (may end with 'Z'), or a datetime

    Returns:
        datetime in UTC when no offset is given, or None if parsing fails
    """
    if not timestamp_str:
        return None
    if isinstance(timestamp_str, datetime):
        ts = timestamp_str
    elif isinstance(timestamp_str, str):
        try:
            ts = datetime.fromisoformat(timestamp_str.replace('Z', '+00:00'))
        except ValueError:
            return None
    else:
        return None

    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class Repository:
    """A container repository (image stream) within a GitLab project"""

    id: int
    project_id: int
    path: str
    tags_count: Optional[int] = None
    name: str = ""
    location: str = ""
    created_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Repository":
        # project_id sometimes comes back as a string
        tags_count = data.get("tags_count")
        return cls(
            id=int(data["id"]),
            project_id=int(data["project_id"]),
            path=data.get("path", ""),
            tags_count=int(tags_count) if tags_count is not None else None,
            name=data.get("name") or "",
            location=data.get("location") or "",
            created_at=data.get("created_at"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CondensedTag:
    """Tag as returned by the tag list endpoint, without creation date"""

    name: str
    path: str = ""
    location: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "CondensedTag":
        return cls(
            name=data["name"],
            path=data.get("path") or "",
            location=data.get("location") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DetailedTag:
    """Tag with the metadata only the tag detail endpoint returns"""

    name: str
    path: str = ""
    location: str = ""
    created_at: Optional[datetime] = None
    digest: Optional[str] = None
    revision: Optional[str] = None
    total_size: Optional[int] = None
    # True when created_at is a stand-in and not the real creation date
    placeholder: bool = field(default=False, compare=False)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DetailedTag":
        total_size = data.get("total_size")
        return cls(
            name=data["name"],
            path=data.get("path") or "",
            location=data.get("location") or "",
            created_at=parse_timestamp(data.get("created_at")),
            digest=data.get("digest"),
            revision=data.get("revision"),
            total_size=int(total_size) if total_size is not None else None,
        )

    @classmethod
    def placeholder_for(cls, tag: CondensedTag, created_at: datetime) -> "DetailedTag":
        """Stand-in used when tag details cannot be fetched at all"""
        return cls(
            name=tag.name,
            path=tag.path,
            location=tag.location,
            created_at=created_at,
            placeholder=True,
        )

    def age_days(self, now: datetime) -> Optional[float]:
        """Age of the tag in (fractional) days relative to now"""
        if self.created_at is None:
            return None
        return (now - self.created_at).total_seconds() / 86400

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data
