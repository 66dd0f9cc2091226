"""Tests for discovery sources."""

import json

import httpx
import pytest

from pricecompare.errors import IngestionError
from pricecompare.ingest.discovery import (
    EmptyDiscoverySource,
    HttpFeedDiscoverySource,
    JsonFileDiscoverySource,
    build_discovery_source,
    run_discovery,
)
from pricecompare.ingest.ingestor import PriceIngestor

OBSERVATION = {
    "name": "Galaxy Buds",
    "brand": "Samsung",
    "retailer": "Alpha",
    "country": "US",
    "price": "129.99",
}


@pytest.mark.asyncio
async def test_file_source_accepts_list_and_object(tmp_path):
    as_list = tmp_path / "list.json"
    as_list.write_text(json.dumps([OBSERVATION, "not an observation"]))
    as_object = tmp_path / "object.json"
    as_object.write_text(json.dumps({"observations": [OBSERVATION, OBSERVATION]}))

    assert await JsonFileDiscoverySource(as_list).fetch() == [OBSERVATION]
    assert len(await JsonFileDiscoverySource(as_object).fetch()) == 2


@pytest.mark.asyncio
async def test_file_source_errors(tmp_path):
    with pytest.raises(FileNotFoundError):
        await JsonFileDiscoverySource(tmp_path / "missing.json").fetch()

    scalar = tmp_path / "scalar.json"
    scalar.write_text("42")
    with pytest.raises(IngestionError):
        await JsonFileDiscoverySource(scalar).fetch()


@pytest.mark.asyncio
async def test_http_source():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/feed"
        return httpx.Response(200, json={"observations": [OBSERVATION]})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = HttpFeedDiscoverySource("https://feeds.example/feed", client=client)
        assert await source.fetch() == [OBSERVATION]


@pytest.mark.asyncio
async def test_http_source_raises_on_error_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(503))

    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(httpx.HTTPStatusError):
            await HttpFeedDiscoverySource("https://feeds.example/feed", client=client).fetch()


def test_build_discovery_source(test_settings):
    assert isinstance(build_discovery_source(test_settings), EmptyDiscoverySource)

    file_settings = test_settings.model_copy(update={"discovery_feed_path": "/tmp/feed.json"})
    assert isinstance(build_discovery_source(file_settings), JsonFileDiscoverySource)

    both = file_settings.model_copy(update={"discovery_feed_url": "https://feeds.example/feed"})
    assert isinstance(build_discovery_source(both), HttpFeedDiscoverySource)


@pytest.mark.asyncio
async def test_run_discovery_ingests_fetched_observations(session_factory, test_settings, catalog, tmp_path):
    feed = tmp_path / "feed.json"
    feed.write_text(json.dumps([OBSERVATION, {**OBSERVATION, "price": "-1"}]))

    stats = await run_discovery(JsonFileDiscoverySource(feed), PriceIngestor(session_factory, test_settings))

    assert stats["source"] == "json_file"
    assert stats["observations"] == 2
    assert stats["prices_updated"] == 1
    assert stats["failed"] == 1
