"""Discovery sources feeding price observations into ingestion."""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import httpx

from pricecompare.config import Settings, settings as default_settings
from pricecompare.errors import IngestionError
from pricecompare.ingest.ingestor import PriceIngestor

logger = logging.getLogger(__name__)


def _extract_items(payload: Any) -> list[dict]:
    """Accept either a bare list or an object with an "observations" list."""
    if isinstance(payload, dict):
        payload = payload.get("observations", [])
    if not isinstance(payload, list):
        raise IngestionError("Discovery payload must be a list of observations")
    return [item for item in payload if isinstance(item, dict)]


class DiscoverySource(ABC):
    """Produces raw observation dicts for one ingestion run."""

    name: str = "discovery"

    @abstractmethod
    async def fetch(self) -> list[dict]:
        """Return raw observations; validation happens in the ingestor."""


class JsonFileDiscoverySource(DiscoverySource):
    """Reads observations from a JSON file on disk."""

    name = "json_file"

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def fetch(self) -> list[dict]:
        if not self.path.exists():
            raise FileNotFoundError(f"Discovery feed not found: {self.path}")
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        items = _extract_items(payload)
        logger.info(f"Loaded {len(items)} observations from {self.path}")
        return items


class HttpFeedDiscoverySource(DiscoverySource):
    """GETs observations from a JSON feed endpoint."""

    name = "http_feed"

    def __init__(self, url: str, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    async def fetch(self) -> list[dict]:
        if self._client is not None:
            response = await self._client.get(self.url)
        else:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                response = await client.get(self.url)
        response.raise_for_status()
        items = _extract_items(response.json())
        logger.info(f"Fetched {len(items)} observations from {self.url}")
        return items


class EmptyDiscoverySource(DiscoverySource):
    """Used when no feed is configured."""

    name = "none"

    async def fetch(self) -> list[dict]:
        return []


def build_discovery_source(settings: Settings = default_settings) -> DiscoverySource:
    """Pick the configured source (URL first, then file)."""
    if settings.discovery_feed_url:
        return HttpFeedDiscoverySource(
            settings.discovery_feed_url, timeout=settings.discovery_http_timeout
        )
    if settings.discovery_feed_path:
        return JsonFileDiscoverySource(settings.discovery_feed_path)
    logger.warning("No discovery feed configured; ingestion will receive no observations")
    return EmptyDiscoverySource()


async def run_discovery(
    source: DiscoverySource,
    ingestor: PriceIngestor,
) -> dict:
    """
    Fetch observations from a source and ingest them.

    Source errors propagate so the orchestrator records the task as failed.
    """
    logger.info(f"Starting product discovery from source '{source.name}'")
    observations = await source.fetch()
    result = await ingestor.ingest(observations)
    return {"source": source.name, **result.to_dict()}
