"""
TestOps Client - Type Definitions.

============================================================
PURPOSE
============================================================
Shared types for the remote export client.

- Client configuration
- Export units and job handles
- Bearer credential
- The fixed export definition template

============================================================
DESIGN PRINCIPLES
============================================================
- Immutable data structures where possible
- Export payloads are built fresh per attempt, never cached
- No network code here

============================================================
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple


# =============================================================
# CONFIGURATION TYPES
# =============================================================

@dataclass(frozen=True)
class ClientConfig:
    """Configuration for the remote export client."""
    base_url: str = ""
    token: str = ""
    timeout_seconds: float = 30.0
    download_timeout_seconds: float = 60.0
    credential_ttl_seconds: int = 3600


# =============================================================
# EXPORT UNIT
# =============================================================

@dataclass(frozen=True)
class ExportUnit:
    """One (project, tree, group) slice exported as a single CSV artifact."""
    project_id: int
    tree_id: int
    group_id: int
    group_name: str

    def describe(self) -> str:
        return f"project {self.project_id}, group {self.group_name}"


@dataclass(frozen=True)
class ExportJobHandle:
    """Remote-assigned export id, valid for one download call."""
    export_id: int
    unit: ExportUnit


# =============================================================
# CREDENTIAL
# =============================================================

@dataclass(frozen=True)
class Credential:
    """Short-lived bearer token and the moment it was acquired."""
    access_token: str
    acquired_at: datetime

    def is_valid(self, now: datetime, ttl: timedelta) -> bool:
        return bool(self.access_token) and now - self.acquired_at < ttl

    @property
    def authorization_header(self) -> str:
        return f"Bearer {self.access_token}"


# =============================================================
# EXPORT DEFINITION TEMPLATE
# =============================================================

@dataclass(frozen=True)
class FieldMapping:
    """One exported column: remote field identifier and column name."""
    field: str
    name: str
    items_separator: Optional[str] = None
    integration_id: Optional[int] = None
    role_id: Optional[int] = None
    custom_field_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"field": self.field, "name": self.name}
        if self.items_separator:
            data["itemsSeparator"] = self.items_separator
        if self.integration_id:
            data["integrationId"] = self.integration_id
        if self.role_id:
            data["roleId"] = self.role_id
        if self.custom_field_id:
            data["customFieldId"] = self.custom_field_id
        return data


EXPORT_FIELD_MAPPING: Tuple[FieldMapping, ...] = (
    FieldMapping("allure_id", "allure_id"),
    FieldMapping("name", "name"),
    FieldMapping("full_name", "full_name"),
    FieldMapping("automated", "automated"),
    FieldMapping("description", "description"),
    FieldMapping("precondition", "precondition"),
    FieldMapping("expected_result", "expected_result"),
    FieldMapping("status", "status"),
    FieldMapping("scenario", "scenario"),
    FieldMapping("tag", "tag", items_separator=","),
    FieldMapping("link", "link"),
    FieldMapping("example", "example"),
    FieldMapping("parameter", "parameter", items_separator=","),
    FieldMapping("issue_integration", "Gitlab", items_separator=",", integration_id=2),
    FieldMapping("issue_integration", "Интеграция с WB Youtrack", items_separator=",", integration_id=1),
    FieldMapping("role", "Lead", items_separator=",", role_id=-2),
    FieldMapping("role", "Owner", items_separator=",", role_id=-1),
    FieldMapping("role", "AutoQA", items_separator=",", role_id=2),
    FieldMapping("role", "Author", items_separator=",", role_id=3),
    FieldMapping("custom_field", "Suite", items_separator=",", custom_field_id=-5),
    FieldMapping("custom_field", "Component", items_separator=",", custom_field_id=-4),
    FieldMapping("custom_field", "Story", items_separator=",", custom_field_id=-3),
    FieldMapping("custom_field", "Feature", items_separator=",", custom_field_id=-2),
    FieldMapping("custom_field", "Epic", items_separator=",", custom_field_id=-1),
    FieldMapping("custom_field", "Sub-Element", items_separator=",", custom_field_id=8),
    FieldMapping("custom_field", "Sub-Suite", items_separator=",", custom_field_id=9),
)

COLUMN_SEPARATOR = ";"
REPORT_FILENAME = "report.csv"


@dataclass(frozen=True)
class ExportRequest:
    """Export definition payload for one unit."""
    unit: ExportUnit
    mapping: Tuple[FieldMapping, ...] = EXPORT_FIELD_MAPPING
    column_separator: str = COLUMN_SEPARATOR
    include_headers: bool = True
    name: str = REPORT_FILENAME

    @classmethod
    def for_unit(cls, unit: ExportUnit) -> "ExportRequest":
        return cls(unit=unit)

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the remote bulk-export JSON body."""
        return {
            "selection": {
                "projectId": self.unit.project_id,
                "treeId": self.unit.tree_id,
                "groupsExclude": [],
                "groupsInclude": [self.unit.group_id],
                "testCasesExclude": [],
                "testCasesInclude": [],
                "inverted": False,
                "deleted": False,
            },
            "mapping": [m.to_dict() for m in self.mapping],
            "columnSeparator": self.column_separator,
            "includeHeaders": self.include_headers,
            "name": self.name,
        }


__all__ = [
    "ClientConfig",
    "ExportUnit",
    "ExportJobHandle",
    "Credential",
    "FieldMapping",
    "EXPORT_FIELD_MAPPING",
    "ExportRequest",
]
