"""
Tests for service configuration loading and validation.
"""

import json
from datetime import timedelta

import pytest

from core.exceptions import ConfigurationError
from orchestrator.config import ExportServiceConfig, load_projects


@pytest.fixture
def projects_file(tmp_path):
    path = tmp_path / "projects.json"
    path.write_text(json.dumps({
        "projects": [
            {
                "project_id": 17,
                "tree_id": 1,
                "groups": [
                    {"group_id": 26961091, "group_name": "API"},
                    {"group_id": 26961092, "group_name": "UI"},
                ],
            },
            {
                "project_id": 18,
                "tree_id": 4,
                "groups": [{"group_id": 1, "group_name": "Mobile"}],
            },
        ]
    }))
    return path


@pytest.fixture
def env(monkeypatch, projects_file, tmp_path):
    # keep a stray .env in the working directory out of the picture
    monkeypatch.chdir(tmp_path)
    for key in (
        "TESTOPS_BASE_URL", "TESTOPS_TOKEN", "EXPORT_PATH", "CRON_SCHEDULE",
        "MAX_RETRIES", "RETRY_DELAY_SECONDS", "MAX_CONCURRENT_EXPORTS",
        "S3_ENABLED", "S3_BUCKET", "S3_ACCESS_KEY", "S3_SECRET_KEY",
        "LEADER_ELECTION", "RETENTION_DAYS",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("TESTOPS_BASE_URL", "https://testops.example.com/")
    monkeypatch.setenv("TESTOPS_TOKEN", "secret-token-value")
    monkeypatch.setenv("PROJECTS_CONFIG", str(projects_file))
    return monkeypatch


class TestLoading:

    def test_from_env_defaults(self, env):
        config = ExportServiceConfig.from_env()

        assert config.base_url == "https://testops.example.com"
        assert config.cron_schedule == "0 7 * * *"
        assert config.max_retries == 10
        assert config.retry_delay_seconds == 900.0
        assert config.max_concurrent_exports == 5
        assert config.validate() == []

    def test_units_flatten_in_file_order(self, env):
        config = ExportServiceConfig.from_env()

        units = config.export_units()

        assert [(u.project_id, u.group_name) for u in units] == [
            (17, "API"),
            (17, "UI"),
            (18, "Mobile"),
        ]
        assert units[0].group_id == 26961091
        assert units[2].tree_id == 4

    def test_engine_settings(self, env):
        env.setenv("MAX_RETRIES", "3")
        env.setenv("RETRY_DELAY_SECONDS", "60")
        env.setenv("RETENTION_DAYS", "7")

        settings = ExportServiceConfig.from_env().engine_settings()

        assert settings.max_attempts == 3
        assert settings.backoff_delay(2) == 120.0
        assert settings.retention == timedelta(days=7)

    def test_non_numeric_value_is_config_error(self, env):
        env.setenv("MAX_RETRIES", "ten")

        with pytest.raises(ConfigurationError) as exc_info:
            ExportServiceConfig.from_env()

        assert exc_info.value.context["config_key"] == "MAX_RETRIES"

    def test_s3_disabled_has_no_s3_config(self, env):
        assert ExportServiceConfig.from_env().s3_config() is None


class TestValidation:

    def test_missing_token(self, env):
        env.delenv("TESTOPS_TOKEN")
        config = ExportServiceConfig.from_env()

        assert "TESTOPS_TOKEN is not set" in config.validate()
        with pytest.raises(ConfigurationError):
            config.ensure_valid()

    def test_s3_enabled_without_bucket(self, env):
        env.setenv("S3_ENABLED", "true")
        env.setenv("S3_ACCESS_KEY", "AKIA")
        env.setenv("S3_SECRET_KEY", "shh")
        config = ExportServiceConfig.from_env()

        with pytest.raises(ConfigurationError) as exc_info:
            config.ensure_valid()

        assert "S3_BUCKET" in str(exc_info.value)

    def test_invalid_cron(self, env):
        env.setenv("CRON_SCHEDULE", "every day")

        errors = ExportServiceConfig.from_env().validate()

        assert any("CRON_SCHEDULE" in e for e in errors)

    def test_unknown_leader_election(self, env):
        env.setenv("LEADER_ELECTION", "zookeeper")

        errors = ExportServiceConfig.from_env().validate()

        assert any("LEADER_ELECTION" in e for e in errors)

    @pytest.mark.parametrize("group_name", ["../etc", "API/v2", "UI\\web", ""])
    def test_group_name_unusable_in_artifact_names(self, env, tmp_path, group_name):
        path = tmp_path / "bad_projects.json"
        path.write_text(json.dumps({
            "projects": [{
                "project_id": 17,
                "tree_id": 1,
                "groups": [{"group_id": 5, "group_name": group_name}],
            }]
        }))
        env.setenv("PROJECTS_CONFIG", str(path))
        config = ExportServiceConfig.from_env()

        with pytest.raises(ConfigurationError) as exc_info:
            config.ensure_valid()

        assert "group_name" in str(exc_info.value)


class TestProjectsFile:

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_projects(str(tmp_path / "nope.json"))

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "projects.json"
        path.write_text("{not json")

        with pytest.raises(ConfigurationError):
            load_projects(str(path))

    def test_missing_field(self, tmp_path):
        path = tmp_path / "projects.json"
        path.write_text(json.dumps({"projects": [{"project_id": 1}]}))

        with pytest.raises(ConfigurationError):
            load_projects(str(path))
