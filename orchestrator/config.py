"""
Orchestrator - Configuration.

============================================================
RESPONSIBILITY
============================================================
Loads process configuration from the environment (optionally a
.env file) and the JSON projects catalogue.

- Required secrets are validated at startup
- Invalid configuration is fatal (ConfigurationError)
- Secrets are masked whenever configuration is logged

============================================================
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from croniter import croniter
from dotenv import find_dotenv, load_dotenv

from core.exceptions import ConfigurationError
from core.logging_config import mask_secret
from artifact_store.models import is_safe_name
from artifact_store.s3 import S3Config
from orchestrator.models import EngineSettings
from testops_client.types import ClientConfig, ExportUnit


logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes")


# ============================================================
# PROJECTS CATALOGUE
# ============================================================

@dataclass(frozen=True)
class ExportGroupConfig:
    """One group to export within a project."""
    group_id: int
    group_name: str


@dataclass(frozen=True)
class ProjectConfig:
    """A TestOps project and its exported groups."""
    project_id: int
    tree_id: int
    groups: List[ExportGroupConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectConfig":
        return cls(
            project_id=int(data["project_id"]),
            tree_id=int(data["tree_id"]),
            groups=[
                ExportGroupConfig(
                    group_id=int(group["group_id"]),
                    group_name=str(group["group_name"]),
                )
                for group in data.get("groups", [])
            ],
        )


def load_projects(path: str) -> List[ProjectConfig]:
    """
    Read the projects catalogue file.

    Raises:
        ConfigurationError: unreadable file or malformed content
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read projects file {path}: {e}",
            config_key="PROJECTS_CONFIG",
            cause=e,
        )
    except ValueError as e:
        raise ConfigurationError(
            f"Projects file {path} is not valid JSON: {e}",
            config_key="PROJECTS_CONFIG",
            cause=e,
        )

    try:
        return [ProjectConfig.from_dict(p) for p in raw.get("projects", [])]
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Projects file {path} has an invalid entry: {e}",
            config_key="PROJECTS_CONFIG",
            cause=e,
        )


# ============================================================
# SERVICE CONFIG
# ============================================================

@dataclass
class ExportServiceConfig:
    """Process-wide configuration."""

    base_url: str = ""
    token: str = ""
    export_path: str = "./exports"
    projects_path: str = "projects.json"
    projects: List[ProjectConfig] = field(default_factory=list)
    cron_schedule: str = "0 7 * * *"

    max_retries: int = 10
    retry_delay_seconds: float = 900.0
    materialization_delay_seconds: float = 5.0
    max_concurrent_exports: int = 5
    retention_days: int = 30

    web_host: str = "0.0.0.0"
    web_port: int = 9090

    s3_enabled: bool = False
    s3_bucket: str = ""
    s3_endpoint: str = ""
    s3_region: str = "us-east-1"
    s3_access_key: str = ""
    s3_secret_key: str = ""

    leader_election: str = "none"
    redis_url: str = "redis://localhost:6379/0"
    leader_lease_name: str = "testops-export-leader"
    leader_lease_seconds: int = 15
    leader_renew_seconds: int = 5

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls, load_projects_file: bool = True) -> "ExportServiceConfig":
        """
        Load configuration from environment variables.

        Raises:
            ConfigurationError: a numeric variable does not parse, or the
                projects catalogue cannot be loaded
        """
        load_dotenv(find_dotenv(usecwd=True))

        config = cls(
            base_url=os.getenv("TESTOPS_BASE_URL", "").rstrip("/"),
            token=os.getenv("TESTOPS_TOKEN", ""),
            export_path=os.getenv("EXPORT_PATH", "./exports"),
            projects_path=os.getenv("PROJECTS_CONFIG", "projects.json"),
            cron_schedule=os.getenv("CRON_SCHEDULE", "0 7 * * *"),
            max_retries=_env_int("MAX_RETRIES", 10),
            retry_delay_seconds=_env_float("RETRY_DELAY_SECONDS", 900.0),
            materialization_delay_seconds=_env_float("MATERIALIZATION_DELAY_SECONDS", 5.0),
            max_concurrent_exports=_env_int("MAX_CONCURRENT_EXPORTS", 5),
            retention_days=_env_int("RETENTION_DAYS", 30),
            web_host=os.getenv("WEB_HOST", "0.0.0.0"),
            web_port=_env_int("WEB_PORT", 9090),
            s3_enabled=os.getenv("S3_ENABLED", "false").lower() in _TRUE_VALUES,
            s3_bucket=os.getenv("S3_BUCKET", ""),
            s3_endpoint=os.getenv("S3_ENDPOINT", ""),
            s3_region=os.getenv("S3_REGION", "us-east-1"),
            s3_access_key=os.getenv("S3_ACCESS_KEY", ""),
            s3_secret_key=os.getenv("S3_SECRET_KEY", ""),
            leader_election=os.getenv("LEADER_ELECTION", "none").lower(),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            leader_lease_name=os.getenv("LEADER_LEASE_NAME", "testops-export-leader"),
            leader_lease_seconds=_env_int("LEADER_LEASE_SECONDS", 15),
            leader_renew_seconds=_env_int("LEADER_RENEW_SECONDS", 5),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )

        if load_projects_file:
            config.projects = load_projects(config.projects_path)

        return config

    def validate(self) -> List[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.token:
            errors.append("TESTOPS_TOKEN is not set")
        if not self.base_url:
            errors.append("TESTOPS_BASE_URL is not set")
        if self.max_retries < 1:
            errors.append("MAX_RETRIES must be at least 1")
        if self.retry_delay_seconds < 0:
            errors.append("RETRY_DELAY_SECONDS must not be negative")
        if self.materialization_delay_seconds < 0:
            errors.append("MATERIALIZATION_DELAY_SECONDS must not be negative")
        if self.max_concurrent_exports < 1:
            errors.append("MAX_CONCURRENT_EXPORTS must be at least 1")
        if self.retention_days < 1:
            errors.append("RETENTION_DAYS must be at least 1")
        if not croniter.is_valid(self.cron_schedule):
            errors.append(f"CRON_SCHEDULE is not a valid cron expression: '{self.cron_schedule}'")

        if self.s3_enabled:
            if not self.s3_bucket:
                errors.append("S3_BUCKET must be set when S3_ENABLED=true")
            if not self.s3_access_key:
                errors.append("S3_ACCESS_KEY must be set when S3_ENABLED=true")
            if not self.s3_secret_key:
                errors.append("S3_SECRET_KEY must be set when S3_ENABLED=true")

        if self.leader_election not in ("none", "redis"):
            errors.append("LEADER_ELECTION must be 'none' or 'redis'")
        elif self.leader_election == "redis" and self.leader_renew_seconds >= self.leader_lease_seconds:
            errors.append("LEADER_RENEW_SECONDS must be shorter than LEADER_LEASE_SECONDS")

        for project in self.projects:
            for group in project.groups:
                if not is_safe_name(group.group_name):
                    errors.append(
                        f"Group {group.group_id} of project {project.project_id} "
                        f"has an unusable group_name: '{group.group_name}'"
                    )

        return errors

    def ensure_valid(self) -> None:
        """Raise ConfigurationError listing every problem found."""
        errors = self.validate()
        if errors:
            raise ConfigurationError(f"Invalid configuration: {'; '.join(errors)}")

    # --------------------------------------------------------
    # Derived settings
    # --------------------------------------------------------

    def export_units(self) -> List[ExportUnit]:
        """Flatten the catalogue into export units in file order."""
        return [
            ExportUnit(
                project_id=project.project_id,
                tree_id=project.tree_id,
                group_id=group.group_id,
                group_name=group.group_name,
            )
            for project in self.projects
            for group in project.groups
        ]

    def client_config(self) -> ClientConfig:
        return ClientConfig(base_url=self.base_url, token=self.token)

    def s3_config(self) -> Optional[S3Config]:
        if not self.s3_enabled:
            return None
        return S3Config(
            bucket=self.s3_bucket,
            access_key=self.s3_access_key,
            secret_key=self.s3_secret_key,
            region=self.s3_region,
            endpoint=self.s3_endpoint,
        )

    def engine_settings(self) -> EngineSettings:
        return EngineSettings(
            max_attempts=self.max_retries,
            retry_delay_seconds=self.retry_delay_seconds,
            materialization_delay_seconds=self.materialization_delay_seconds,
            max_concurrent=self.max_concurrent_exports,
            retention=timedelta(days=self.retention_days),
        )

    def log_summary(self) -> None:
        """Log effective configuration with secrets masked."""
        logger.info(
            f"Config | base_url={self.base_url} | token={mask_secret(self.token)} | "
            f"export_path={self.export_path} | projects={len(self.projects)} | "
            f"units={len(self.export_units())} | schedule='{self.cron_schedule}' | "
            f"max_retries={self.max_retries} | retry_delay={self.retry_delay_seconds}s | "
            f"concurrency={self.max_concurrent_exports} | retention={self.retention_days}d"
        )
        if self.s3_enabled:
            logger.info(
                f"Config | s3 bucket={self.s3_bucket} | endpoint={self.s3_endpoint or 'aws'} | "
                f"region={self.s3_region} | access_key={mask_secret(self.s3_access_key)} | "
                f"secret_key={mask_secret(self.s3_secret_key)}"
            )


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}", config_key=key)


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {value!r}", config_key=key)


__all__ = [
    "ExportGroupConfig",
    "ProjectConfig",
    "ExportServiceConfig",
    "load_projects",
]
