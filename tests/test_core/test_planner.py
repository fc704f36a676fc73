"""Tests for realmsync.core.planner module."""

import re
from pathlib import Path

import pytest

from realmsync.core.ledger import ContentLedger
from realmsync.core.planner import DiffPlanner, ExclusionRules


@pytest.fixture
def ledger(install_dir: Path) -> ContentLedger:
    return ContentLedger(install_dir / ".arlauncher")


@pytest.fixture
def planner(install_dir: Path, ledger: ContentLedger) -> DiffPlanner:
    return DiffPlanner(install_dir, ledger)


def _write(root: Path, rel: str, data: bytes) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)


class TestExclusionRules:
    """Test ExclusionRules class."""

    @pytest.mark.parametrize("path", [
        "Data/enUS/realmlist.wtf",
        "Data/deDE/realmlist.wtf",
        "Launcher/ARLauncher.exe",
        "launcher/readme.txt",
    ])
    def test_excluded(self, path):
        assert ExclusionRules().matches(path)

    @pytest.mark.parametrize("path", [
        "Data/realmlist.wtf",
        "Data/enus/realmlist.wtf",
        "Data/enUS/realmlist.wtf.bak",
        "Data/enUS/patch-enUS.MPQ",
        "LauncherData/file.txt",
    ])
    def test_not_excluded(self, path):
        assert not ExclusionRules().matches(path)

    def test_custom_rules(self):
        rules = ExclusionRules(patterns=[re.compile(r"^Cache/")], reserved_prefixes=[])
        assert rules.matches("Cache/WDB/creaturecache.wdb")
        assert not rules.matches("Data/enUS/realmlist.wtf")


class TestDiffPlanner:
    """Test DiffPlanner class."""

    def test_missing_files_pending(self, planner, make_entry, make_manifest):
        manifest = make_manifest(make_entry("Wow.exe", b"exe"), make_entry("Data/a.MPQ", b"mpq"))
        plan = planner.plan(manifest)
        assert [e.path for e in plan.pending_entries] == ["Wow.exe", "Data/a.MPQ"]

    def test_stale_file_pending(self, install_dir, planner, make_entry, make_manifest):
        _write(install_dir, "Wow.exe", b"old")
        plan = planner.plan(make_manifest(make_entry("Wow.exe", b"new")))
        assert plan.pending_count == 1

    def test_synced_directory_plans_nothing(self, install_dir, planner, make_entry, make_manifest):
        manifest = make_manifest(
            make_entry("Wow.exe", b"exe"),
            make_entry("Data/a.MPQ", b"mpq"),
        )
        _write(install_dir, "Wow.exe", b"exe")
        _write(install_dir, "Data/a.MPQ", b"mpq")

        first = planner.plan(manifest)
        second = planner.plan(manifest)
        assert not first.needs_any
        assert first == second

    def test_realmlist_always_excluded(self, install_dir, planner, make_entry, make_manifest):
        manifest = make_manifest(make_entry("Data/enUS/realmlist.wtf", b"set realmlist x\r\n"))
        assert not planner.plan(manifest).needs_any

        _write(install_dir, "Data/enUS/realmlist.wtf", b"something else")
        assert not planner.plan(manifest).needs_any
        assert not planner.plan(manifest, install_mode=True).needs_any

    def test_launcher_namespace_excluded(self, planner, make_entry, make_manifest):
        manifest = make_manifest(make_entry("Launcher/ARLauncher.exe", b"bin"))
        assert not planner.plan(manifest).needs_any

    def test_archives_ignored_outside_install_mode(self, planner, make_entry, make_manifest):
        manifest = make_manifest(make_entry("core.zip", b"zip"), make_entry("extra.zip", b"zip2"))
        assert not planner.plan(manifest, install_mode=False).needs_any

    def test_applied_archive_excluded_in_install_mode(self, planner, ledger, make_entry, make_manifest):
        applied = make_entry("core.zip", b"zip")
        fresh = make_entry("extra.zip", b"zip2")
        ledger.record_applied(applied.content_hash)

        plan = planner.plan(make_manifest(applied, fresh), install_mode=True)
        assert [e.path for e in plan.pending_entries] == ["extra.zip"]

    def test_archive_decision_ignores_local_files(self, install_dir, planner, make_entry, make_manifest):
        entry = make_entry("core.zip", b"zip")
        _write(install_dir, "core.zip", b"zip")
        assert planner.plan(make_manifest(entry), install_mode=True).pending_count == 1

    def test_plan_is_read_only(self, install_dir, planner, make_entry, make_manifest):
        manifest = make_manifest(make_entry("Data/a.MPQ", b"mpq"), make_entry("core.zip", b"zip"))
        planner.plan(manifest, install_mode=True)
        assert list(install_dir.iterdir()) == []
