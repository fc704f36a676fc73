"""HTTP client for the content and self-update manifests."""

from __future__ import annotations

import json
from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError

from realmsync.core.config import HTTPConfig
from realmsync.core.errors import ManifestFetchError
from realmsync.core.types import ContentManifest, SelfUpdateManifest

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)


def create_http_client(config: HTTPConfig, transport: httpx.BaseTransport | None = None) -> httpx.Client:
    """Create the shared sync HTTP client."""
    return httpx.Client(
        timeout=config.timeout,
        verify=config.verify_ssl,
        follow_redirects=True,
        transport=transport,
    )


class ManifestClient:
    """Fetches manifests fresh on every call; nothing is cached across runs.

    Args:
        config: Optional HTTP configuration
        client: Optional pre-built HTTP client (shared with transfers)
    """

    def __init__(
        self,
        config: HTTPConfig | None = None,
        client: httpx.Client | None = None,
    ):
        self.config = config or HTTPConfig()
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.Client:
        """Get or create sync HTTP client."""
        if self._client is None:
            self._client = create_http_client(self.config)
        return self._client

    def fetch_content_manifest(self, url: str) -> ContentManifest:
        """Fetch and parse a content manifest.

        Raises:
            ManifestFetchError: On network, JSON or schema failure
        """
        manifest = self._fetch_model(url, ContentManifest)
        logger.info(
            "manifest_fetched",
            url=url,
            version=manifest.version,
            entries=len(manifest.entries),
        )
        return manifest

    def fetch_self_update_manifest(self, url: str) -> SelfUpdateManifest:
        """Fetch and parse a launcher self-update manifest.

        Raises:
            ManifestFetchError: On network, JSON or schema failure
        """
        manifest = self._fetch_model(url, SelfUpdateManifest)
        logger.info("self_update_manifest_fetched", url=url, version=manifest.version)
        return manifest

    def _fetch_model(self, url: str, model: type[ModelT]) -> ModelT:
        payload = self._fetch_json(url)
        if not isinstance(payload, dict):
            raise ManifestFetchError(f"Manifest at {url} is not a JSON object", url=url)
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            raise ManifestFetchError(f"Invalid manifest at {url}: {e}", url=url) from e

    def _fetch_json(self, url: str) -> Any:
        last_error: Exception | None = None

        for attempt in range(self.config.max_retries):
            try:
                response = self.client.get(url)
                response.raise_for_status()
                return response.json()
            except json.JSONDecodeError as e:
                raise ManifestFetchError(f"Manifest at {url} is not valid JSON: {e}", url=url) from e
            except httpx.HTTPStatusError as e:
                last_error = e
                # Client errors will not change on retry
                if e.response.status_code < 500:
                    break
            except httpx.HTTPError as e:
                last_error = e

            logger.debug("manifest_fetch_retry", url=url, attempt=attempt + 1, error=str(last_error))

        logger.error("manifest_fetch_failed", url=url, error=str(last_error))
        raise ManifestFetchError(f"Failed to fetch manifest {url}: {last_error}", url=url) from last_error

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def __enter__(self) -> ManifestClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()
