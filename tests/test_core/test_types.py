"""Tests for realmsync.core.types module."""

import pytest
from pydantic import ValidationError

from realmsync.core.types import (
    ContentManifest,
    EntryResult,
    ManifestEntry,
    Outcome,
    SelfUpdateManifest,
    UpdatePlan,
)

HASH = "ab" * 32


class TestManifestEntry:
    """Test ManifestEntry model."""

    def test_parses_wire_names(self):
        entry = ManifestEntry.model_validate({
            "path": "Data\\patch-A.MPQ",
            "size": 10,
            "sha256": HASH,
            "torrent": "magnet:?xt=urn:btih:abc",
        })
        assert entry.path == "Data/patch-A.MPQ"
        assert entry.content_hash == HASH.upper()
        assert entry.transfer_hint == "magnet:?xt=urn:btih:abc"

    def test_blank_transfer_hint_is_none(self):
        entry = ManifestEntry(path="a.txt", sha256=HASH, torrent="  ")
        assert entry.transfer_hint is None

    @pytest.mark.parametrize("path", ["../escape.txt", "/abs/file", "C:/Windows/file", ""])
    def test_rejects_unsafe_paths(self, path):
        with pytest.raises(ValidationError):
            ManifestEntry(path=path, sha256=HASH)

    def test_rejects_bad_hash(self):
        with pytest.raises(ValidationError):
            ManifestEntry(path="a.txt", sha256="abcd")

    def test_rejects_negative_size(self):
        with pytest.raises(ValidationError):
            ManifestEntry(path="a.txt", size=-1, sha256=HASH)

    def test_is_archive(self):
        assert ManifestEntry(path="core.ZIP", sha256=HASH).is_archive
        assert not ManifestEntry(path="Data/patch.MPQ", sha256=HASH).is_archive

    def test_frozen(self):
        entry = ManifestEntry(path="a.txt", sha256=HASH)
        with pytest.raises(ValidationError):
            entry.path = "b.txt"


class TestContentManifest:
    """Test ContentManifest model."""

    def test_parses_wire_document(self):
        manifest = ContentManifest.model_validate({
            "version": "42",
            "minLauncherVersion": "1.0.0",
            "clientBuild": "12340",
            "baseUrl": "https://cdn.test/client/",
            "files": [{"path": "Wow.exe", "size": 1, "sha256": HASH}],
            "unknown": "ignored",
        })
        assert manifest.version == "42"
        assert manifest.min_client_version == "1.0.0"
        assert manifest.client_build == "12340"
        assert len(manifest.entries) == 1

    def test_rejects_duplicate_paths(self):
        with pytest.raises(ValidationError, match="Duplicate"):
            ContentManifest(
                baseUrl="https://cdn.test/",
                files=[
                    {"path": "Data/a.MPQ", "sha256": HASH},
                    {"path": "data/A.mpq", "sha256": HASH},
                ],
            )


class TestSelfUpdateManifest:
    """Test SelfUpdateManifest model."""

    def test_archive_detection_ignores_query(self):
        manifest = SelfUpdateManifest(version="1.2.0", url="https://cdn.test/l.zip?sig=1", sha256=HASH)
        assert manifest.is_archive

    def test_executable_artifact(self):
        manifest = SelfUpdateManifest(version="1.2.0", url="https://cdn.test/Launcher.exe", sha256=HASH)
        assert not manifest.is_archive


class TestOutcomeAndResults:
    """Test Outcome, UpdatePlan and EntryResult."""

    def test_error_outcomes(self):
        assert {o for o in Outcome if o.is_error} == {Outcome.HASH_MISMATCH, Outcome.FAILED}

    def test_update_plan_counts(self):
        plan = UpdatePlan()
        assert plan.pending_count == 0
        assert not plan.needs_any

        plan = UpdatePlan(pending_entries=[ManifestEntry(path="a", sha256=HASH)])
        assert plan.pending_count == 1
        assert plan.needs_any

    def test_describe(self):
        entry = ManifestEntry(path="Data/a.MPQ", size=12, sha256=HASH)
        assert EntryResult(entry, Outcome.UPDATED).describe() == (
            "UPDATED        Data/a.MPQ (12 bytes)"
        )
        assert EntryResult(entry, Outcome.SKIPPED, "ignored").describe().endswith(" - ignored")
