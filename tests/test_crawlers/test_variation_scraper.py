from pathlib import Path
import sys

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from crawler.variation_scraper import (
    VariationScraper,
    build_search_variations,
    dedupe_records,
)


def test_build_search_variations():
    assert build_search_variations("zapatos deportivos", "CO") == [
        "zapatos deportivos",
        "zapatos",
        "zapatos deportivos",
        "zapatos deportivos colombia",
        "zapatos deportivos oferta",
        "zapatos deportivos descuento",
    ]


def test_unknown_country_uses_lowercase_code():
    assert build_search_variations("bolsos", "BR")[3] == "bolsos br"


def test_dedupe_drops_identical_records_only():
    same = {"id": "1", "page_name": "A"}
    changed = {"id": "1", "page_name": "B"}
    merged = dedupe_records([
        ("zapatos", [same, changed]),
        ("zapatos oferta", [dict(same), {"id": "2"}]),
    ])
    assert len(merged) == 3
    assert merged[0]["search_variation"] == "zapatos"
    assert merged[2]["search_variation"] == "zapatos oferta"
    assert all(ad["source"] == "enhanced_api_scraping" for ad in merged)
    assert all(ad["scraped"] is True for ad in merged)


def _ad(ad_id, created):
    return {"id": ad_id, "ad_creation_time": created}


@pytest.mark.asyncio
async def test_scrape_isolates_failed_variations():
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        term = request.url.params["search_terms"]
        requested.append(term)
        assert request.url.params["access_token"] == "tok"
        if term.endswith("oferta"):
            return httpx.Response(400, json={"error": {"message": "rate limited"}})
        if term.endswith("descuento"):
            raise httpx.ReadTimeout("timed out", request=request)
        if term == "zapatos":
            return httpx.Response(200, json={"data": [_ad("old", "2025-01-01T00:00:00+0000")]})
        return httpx.Response(200, json={"data": [_ad("new", "2025-05-01T00:00:00+0000")]})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    scraper = VariationScraper(access_token="tok", client=client, delay_ms=0)

    ads = await scraper.scrape("zapatos deportivos", country="CO", max_ads=10)

    assert len(requested) == 6
    # same record from three variations collapses to one, newest first
    assert [ad["id"] for ad in ads] == ["new", "old"]
    assert ads[0]["search_variation"] == "zapatos deportivos"
    assert ads[1]["search_variation"] == "zapatos"


@pytest.mark.asyncio
async def test_scrape_truncates_to_max_ads():
    def handler(request: httpx.Request) -> httpx.Response:
        term = request.url.params["search_terms"]
        return httpx.Response(200, json={"data": [
            _ad(f"{term}-{i}", f"2025-05-{i + 1:02d}T00:00:00+0000") for i in range(3)
        ]})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    scraper = VariationScraper(access_token="tok", client=client, delay_ms=0)

    ads = await scraper.scrape("bolsos", country="MX", max_ads=4)
    assert len(ads) == 4
    assert all(ad["ad_creation_time"] == "2025-05-03T00:00:00+0000" for ad in ads)


@pytest.mark.asyncio
async def test_scrape_all_variations_failing_returns_empty():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"message": "down"}})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    scraper = VariationScraper(access_token="tok", client=client, delay_ms=0)
    assert await scraper.scrape("bolsos") == []


@pytest.mark.asyncio
async def test_scrape_requires_token():
    scraper = VariationScraper(access_token="", delay_ms=0)
    with pytest.raises(RuntimeError, match="FACEBOOK_ACCESS_TOKEN"):
        await scraper.scrape("bolsos")
