"""Pytest configuration and shared fixtures for realmsync tests."""

import hashlib
import io
import json
import re
import zipfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
from rich.console import Console
from structlog.testing import capture_logs

from realmsync.core.config import AppConfig, HTTPConfig
from realmsync.core.types import ContentManifest, ManifestEntry

BASE_URL = "https://cdn.test/client/"


def sha256_hex(data: bytes) -> str:
    """Uppercase SHA-256 of data, as the manifest publishes it."""
    return hashlib.sha256(data).hexdigest().upper()


def make_zip(files: dict[str, bytes]) -> bytes:
    """Build an in-memory zip archive."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buffer.getvalue()


class FakeCDN:
    """Serves fixed bodies for URLs, honouring Range requests.

    Every request is recorded in ``requests`` so tests can assert on the
    network traffic a component generated.
    """

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.status_overrides: dict[str, list[int]] = {}
        self.honor_range = True
        self.requests: list[httpx.Request] = []

    def add(self, url: str, body: bytes) -> None:
        self.files[url] = body

    def add_json(self, url: str, payload: Any) -> None:
        self.files[url] = json.dumps(payload).encode()

    def fail(self, url: str, *statuses: int) -> None:
        """Answer the next requests for url with the given statuses."""
        self.status_overrides.setdefault(url, []).extend(statuses)

    def requests_for(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        pending = self.status_overrides.get(url)
        if pending:
            return httpx.Response(pending.pop(0))

        body = self.files.get(url)
        if body is None:
            return httpx.Response(404)

        range_header = request.headers.get("Range")
        if range_header and self.honor_range:
            match = re.match(r"bytes=(\d+)-$", range_header)
            assert match is not None
            start = int(match.group(1))
            if start >= len(body):
                return httpx.Response(416)
            return httpx.Response(
                206,
                content=body[start:],
                headers={"Content-Range": f"bytes {start}-{len(body) - 1}/{len(body)}"},
            )
        return httpx.Response(200, content=body)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def cdn() -> FakeCDN:
    """Fake CDN backed by httpx.MockTransport."""
    return FakeCDN()


@pytest.fixture
def http_client(cdn: FakeCDN):
    """HTTP client routed to the fake CDN."""
    client = cdn.client()
    yield client
    client.close()


@pytest.fixture
def install_dir(tmp_path: Path) -> Path:
    """Empty game install root."""
    path = tmp_path / "install"
    path.mkdir()
    return path


@pytest.fixture
def staging_dir(tmp_path: Path) -> Path:
    """Scratch directory for archives and artifacts."""
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
def http_config() -> HTTPConfig:
    """HTTP configuration with no backoff delay."""
    return HTTPConfig(max_retries=3, retry_backoff=0.0, chunk_size=4)


@pytest.fixture
def app_config(tmp_path: Path, install_dir: Path, staging_dir: Path, http_config: HTTPConfig) -> AppConfig:
    """Application configuration pointing at temporary directories."""
    return AppConfig(
        config_dir=tmp_path / "config",
        install_dir=install_dir,
        staging_dir=staging_dir,
        manifest_url="https://cdn.test/latest.json",
        self_update_manifest_url="https://cdn.test/launcher.json",
        client_version="1.0.0",
        http=http_config,
        bulk_helper={"enabled": False},
        handoff={"startup_delay": 0, "parent_exit_timeout": 0, "retry_delay": 0},
    )


@pytest.fixture
def make_entry() -> Callable[..., ManifestEntry]:
    """Factory for manifest entries whose hash matches the given body."""
    def factory(path: str, body: bytes, **kwargs: Any) -> ManifestEntry:
        return ManifestEntry(path=path, size=len(body), sha256=sha256_hex(body), **kwargs)
    return factory


@pytest.fixture
def make_manifest() -> Callable[..., ContentManifest]:
    """Factory for content manifests rooted at the fake CDN."""
    def factory(*entries: ManifestEntry, version: str = "1") -> ContentManifest:
        return ContentManifest(version=version, baseUrl=BASE_URL, files=list(entries))
    return factory


@pytest.fixture(autouse=True)
def captured_logs():
    """Capture structlog events instead of rendering them."""
    with capture_logs() as logs:
        yield logs


# Pytest configuration
def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest settings."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list) -> None:
    """Modify test collection to add markers automatically."""
    for item in items:
        # Add unit marker to all tests by default
        if not any(marker.name in ['integration', 'slow'] for marker in item.iter_markers()):
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def cli_context(app_config: AppConfig) -> dict[str, Any]:
    """Click context object as built by the main group."""
    return {
        "config": app_config,
        "console": Console(file=io.StringIO(), no_color=True, width=200),
        "verbose": False,
        "debug": False,
    }
