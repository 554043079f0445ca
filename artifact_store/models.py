"""
Artifact Store - Models.

============================================================
PURPOSE
============================================================
Artifact records and the artifact naming scheme shared by every
backend.

Name format:
    export_<projectID>_<groupName>_<YYYY-MM-DD>_<HH-MM-SS>.csv

- projectID is always segment 1 when split on "_"
- groupName may itself contain "_"
- names that cannot be parsed are excluded from listings

============================================================
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional


ARTIFACT_PREFIX = "export"
ARTIFACT_EXTENSION = ".csv"
NAME_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
DISPLAY_DATE_FORMAT = "%d.%m.%Y %H:%M:%S"


# ============================================================
# ARTIFACT RECORD
# ============================================================

@dataclass(frozen=True)
class ArtifactRecord:
    """A persisted export result."""
    name: str
    size_bytes: int
    last_modified: datetime
    project_id: int

    @property
    def formatted_size(self) -> str:
        return format_size(self.size_bytes)

    @property
    def display_date(self) -> str:
        return self.last_modified.strftime(DISPLAY_DATE_FORMAT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "size_bytes": self.size_bytes,
            "formatted_size": self.formatted_size,
            "last_modified": self.last_modified.isoformat(),
            "display_date": self.display_date,
            "project_id": self.project_id,
        }


@dataclass(frozen=True)
class ParsedArtifactName:
    """Fields recovered from an artifact name."""
    project_id: int
    group_name: str
    created_at: Optional[datetime] = None


# ============================================================
# NAMING
# ============================================================

def build_artifact_name(project_id: int, group_name: str, at: datetime) -> str:
    """Build the artifact name for a unit persisted at the given moment."""
    timestamp = at.strftime(NAME_TIMESTAMP_FORMAT)
    return f"{ARTIFACT_PREFIX}_{project_id}_{group_name}_{timestamp}{ARTIFACT_EXTENSION}"


def parse_artifact_name(name: str) -> Optional[ParsedArtifactName]:
    """
    Recover the project id (and, when present, group and timestamp).

    Returns None for names with fewer than three "_" segments or a
    non-integer project id.
    """
    stem = name[:-len(ARTIFACT_EXTENSION)] if name.endswith(ARTIFACT_EXTENSION) else name
    parts = stem.split("_")
    if len(parts) < 3:
        return None

    try:
        project_id = int(parts[1])
    except ValueError:
        return None

    created_at = None
    group_parts = parts[2:]
    if len(parts) >= 5:
        try:
            created_at = datetime.strptime(
                f"{parts[-2]}_{parts[-1]}", NAME_TIMESTAMP_FORMAT
            ).replace(tzinfo=timezone.utc)
            group_parts = parts[2:-2]
        except ValueError:
            created_at = None

    return ParsedArtifactName(
        project_id=project_id,
        group_name="_".join(group_parts),
        created_at=created_at,
    )


def is_safe_name(name: str) -> bool:
    """Reject names that could escape the backend root."""
    return bool(name) and ".." not in name and "/" not in name and "\\" not in name


# ============================================================
# FORMATTING
# ============================================================

def format_size(size: int) -> str:
    """Human readable size with a 1024 base."""
    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {'KMGTPE'[exp]}B"


__all__ = [
    "ArtifactRecord",
    "ParsedArtifactName",
    "ARTIFACT_EXTENSION",
    "build_artifact_name",
    "parse_artifact_name",
    "is_safe_name",
    "format_size",
]
