"""
Tests for artifact naming and the filesystem backend.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

from artifact_store.filesystem import FilesystemArtifactStore
from artifact_store.models import (
    build_artifact_name,
    format_size,
    is_safe_name,
    parse_artifact_name,
)
from core.clock import MockClock
from core.exceptions import ArtifactNotFoundError, StoreError


T0 = datetime(2026, 3, 1, 7, 0, 0, tzinfo=timezone.utc)


def write_artifact(root, name, data=b"csv", modified=None):
    path = root / name
    path.write_bytes(data)
    if modified is not None:
        ts = modified.timestamp()
        os.utime(path, (ts, ts))
    return path


# ============================================================
# NAMING
# ============================================================

class TestNaming:

    def test_build_name(self):
        at = datetime(2026, 3, 1, 7, 5, 9, tzinfo=timezone.utc)
        assert build_artifact_name(17, "API", at) == "export_17_API_2026-03-01_07-05-09.csv"

    def test_parse_recovers_fields(self):
        parsed = parse_artifact_name("export_17_API_2026-03-01_07-05-09.csv")

        assert parsed.project_id == 17
        assert parsed.group_name == "API"
        assert parsed.created_at == datetime(2026, 3, 1, 7, 5, 9, tzinfo=timezone.utc)

    def test_group_with_underscores(self):
        parsed = parse_artifact_name("export_42_Smoke_Tests_2026-03-01_07-05-09.csv")

        assert parsed.project_id == 42
        assert parsed.group_name == "Smoke_Tests"

    def test_short_names_rejected(self):
        assert parse_artifact_name("export_17.csv") is None
        assert parse_artifact_name("report.csv") is None

    def test_non_numeric_project_rejected(self):
        assert parse_artifact_name("export_abc_API_2026-03-01_07-05-09.csv") is None

    def test_three_segments_without_timestamp(self):
        parsed = parse_artifact_name("export_17_API.csv")

        assert parsed.project_id == 17
        assert parsed.created_at is None

    def test_safe_names(self):
        assert is_safe_name("export_17_API_2026-03-01_07-05-09.csv")
        assert not is_safe_name("../etc/passwd")
        assert not is_safe_name("a/b.csv")
        assert not is_safe_name("a\\b.csv")
        assert not is_safe_name("")

    def test_format_size(self):
        assert format_size(120) == "120 B"
        assert format_size(1536) == "1.5 KB"
        assert format_size(5 * 1024 * 1024) == "5.0 MB"


# ============================================================
# FILESYSTEM BACKEND
# ============================================================

class TestFilesystemStore:

    def test_root_created(self, tmp_path):
        root = tmp_path / "nested" / "exports"
        store = FilesystemArtifactStore(str(root))

        assert root.is_dir()
        assert store.root == root

    def test_root_creation_failure(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("not a dir")

        with pytest.raises(StoreError):
            FilesystemArtifactStore(str(blocker / "exports"))

    @pytest.mark.asyncio
    async def test_save_get_delete(self, tmp_path):
        store = FilesystemArtifactStore(str(tmp_path))
        name = "export_17_API_2026-03-01_07-05-09.csv"

        await store.save(b"a;b\n1;2\n", name)

        assert await store.get(name) == b"a;b\n1;2\n"
        records = await store.list()
        assert [(r.name, r.size_bytes, r.project_id) for r in records] == [(name, 8, 17)]

        await store.delete(name)
        assert await store.list() == []

    @pytest.mark.asyncio
    async def test_missing_artifact(self, tmp_path):
        store = FilesystemArtifactStore(str(tmp_path))

        with pytest.raises(ArtifactNotFoundError):
            await store.get("export_1_A_2026-03-01_07-05-09.csv")
        with pytest.raises(ArtifactNotFoundError):
            await store.delete("export_1_A_2026-03-01_07-05-09.csv")

    @pytest.mark.asyncio
    async def test_unsafe_name_rejected(self, tmp_path):
        store = FilesystemArtifactStore(str(tmp_path / "exports"))

        with pytest.raises(StoreError):
            await store.save(b"x", "../escape.csv")

    @pytest.mark.asyncio
    async def test_list_skips_foreign_entries(self, tmp_path):
        store = FilesystemArtifactStore(str(tmp_path))
        write_artifact(tmp_path, "export_17_API_2026-03-01_07-05-09.csv")
        write_artifact(tmp_path, "notes.txt")
        write_artifact(tmp_path, "broken.csv")
        (tmp_path / "export_18_dir_2026-03-01_07-05-09.csv").mkdir()

        records = await store.list()

        assert [r.name for r in records] == ["export_17_API_2026-03-01_07-05-09.csv"]

    @pytest.mark.asyncio
    async def test_prune_boundaries(self, tmp_path):
        clock = MockClock(T0)
        store = FilesystemArtifactStore(str(tmp_path), clock=clock)
        write_artifact(tmp_path, "export_1_Old_2026-01-01_07-00-00.csv", modified=T0 - timedelta(days=31))
        write_artifact(tmp_path, "export_1_Edge_2026-01-30_07-00-00.csv", modified=T0 - timedelta(days=30))
        write_artifact(tmp_path, "export_1_New_2026-02-28_07-00-00.csv", modified=T0 - timedelta(days=1))
        write_artifact(tmp_path, "stale.csv", modified=T0 - timedelta(days=90))

        deleted = await store.prune_older_than(timedelta(days=30))

        assert deleted == 1
        remaining = sorted(p.name for p in tmp_path.iterdir())
        assert remaining == [
            "export_1_Edge_2026-01-30_07-00-00.csv",
            "export_1_New_2026-02-28_07-00-00.csv",
            "stale.csv",
        ]

    @pytest.mark.asyncio
    async def test_prune_continues_past_failed_delete(self, tmp_path):
        clock = MockClock(T0)
        store = FilesystemArtifactStore(str(tmp_path), clock=clock)
        for group in ("A", "B"):
            write_artifact(
                tmp_path,
                f"export_1_{group}_2026-01-01_07-00-00.csv",
                modified=T0 - timedelta(days=40),
            )

        original_delete = store.delete

        async def flaky_delete(name):
            if "_A_" in name:
                raise StoreError("permission denied", backend="filesystem", name=name)
            await original_delete(name)

        store.delete = flaky_delete

        deleted = await store.prune_older_than(timedelta(days=30))

        assert deleted == 1
        assert [p.name for p in tmp_path.iterdir()] == ["export_1_A_2026-01-01_07-00-00.csv"]
