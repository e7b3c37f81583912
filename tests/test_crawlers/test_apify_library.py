from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace
import sys
from urllib.parse import parse_qs, urlparse

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from crawler.apify_library import (
    ApifyLibraryScraper,
    build_actor_input,
    build_ads_library_url,
    reshape_apify_item,
)

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _item(**overrides) -> dict:
    item = {
        "ad_archive_id": "777",
        "page_id": "55",
        "page_name": "Tienda",
        "start_date": int((NOW - timedelta(days=20)).timestamp()),
        "end_date": None,
        "collation_count": 3,
        "is_active": True,
        "ad_library_url": "https://www.facebook.com/ads/library/?id=777",
        "publisher_platform": ["FACEBOOK", "INSTAGRAM"],
        "snapshot": {
            "body": {"text": "Zapatos en oferta"},
            "title": "Zapatos",
            "caption": "tienda.co",
            "images": [{"original_image_url": "https://img/1.jpg"}],
            "videos": [],
        },
    }
    item.update(overrides)
    return item


# ── URL / input ──

def test_ads_library_url_query():
    url = build_ads_library_url("zapatos deportivos", "CO", "ALL")
    query = parse_qs(urlparse(url).query)
    assert url.startswith("https://www.facebook.com/ads/library/?")
    assert query["q"] == ["zapatos deportivos"]
    assert query["country"] == ["CO"]
    assert query["ad_type"] == ["all"]
    assert query["active_status"] == ["active"]
    assert "start_date[max]" not in query


def test_ads_library_url_min_days_bound():
    url = build_ads_library_url("x", "MX", min_days=10, today=date(2025, 6, 1))
    assert parse_qs(urlparse(url).query)["start_date[max]"] == ["2025-05-22"]


def test_actor_input():
    actor_input = build_actor_input("https://fb/lib", "CO", 50)
    assert actor_input["urls"] == [{"url": "https://fb/lib"}]
    assert actor_input["count"] == 50
    assert actor_input["scrapePageAds.countryCode"] == "CO"


# ── reshape ──

def test_reshape_item_sets_days_and_hotness():
    ad = reshape_apify_item(_item(), 0, now=NOW)
    assert ad["id"] == "777"
    assert ad["source"] == "apify_scraping"
    assert ad["scraped"] is True
    assert ad["days_running"] == 20
    assert ad["is_long_running"] is False
    assert ad["is_indefinite"] is True
    assert ad["hotness_score"] == 2
    assert ad["ad_creative_bodies"] == ["Zapatos en oferta"]
    assert ad["ad_creative_link_titles"] == ["Zapatos"]
    assert ad["publisher_platforms"] == ["FACEBOOK", "INSTAGRAM"]
    assert ad["apify_data"]["images"] == [{"original_image_url": "https://img/1.jpg"}]
    assert ad["apify_data"]["original_item"]["ad_archive_id"] == "777"


def test_reshape_item_with_missing_fields():
    ad = reshape_apify_item({}, 4, now=NOW)
    assert ad["id"].startswith("apify_")
    assert ad["id"].endswith("_4")
    assert ad["page_name"] == "Página no disponible"
    assert ad["ad_creative_bodies"] == []
    assert ad["ad_delivery_start_time"] is None
    assert ad["days_running"] == 0
    assert ad["hotness_score"] == 1
    assert ad["impressions"]["lower_bound"] == "N/A"


def test_reshape_item_with_end_date_is_not_indefinite():
    ad = reshape_apify_item(_item(end_date=int(NOW.timestamp())), 0, now=NOW)
    assert ad["is_indefinite"] is False
    assert ad["ad_delivery_stop_time"].startswith("2025-06-01")


def test_millisecond_start_date_survives_min_days_filter():
    from processor.post_filter import filter_min_days

    ad = reshape_apify_item(
        {"ad_archive_id": "1", "start_date": 1_745_000_000_000, "total_active_time": 20 * 86400},
        0,
        now=NOW,
    )
    assert ad["ad_delivery_start_time"] is not None
    assert ad["ad_delivery_start_time"] > NOW.isoformat()
    assert ad["days_running"] == 0
    assert ad["is_long_running"] is False

    assert filter_min_days([ad], 10, now=NOW) == [ad]
    assert filter_min_days([ad], 30, now=NOW) == []


# ── scraper ──

class FakeActor:
    def __init__(self, owner):
        self.owner = owner

    async def call(self, run_input=None):
        self.owner.run_input = run_input
        if self.owner.fail:
            raise RuntimeError("actor run failed")
        return {"defaultDatasetId": "ds-1"}


class FakeDataset:
    def __init__(self, items):
        self.items = items

    async def list_items(self):
        return SimpleNamespace(items=self.items)


class FakeApifyClient:
    def __init__(self, items, fail=False):
        self.items = items
        self.fail = fail
        self.actor_id = None
        self.dataset_id = None
        self.run_input = None

    def actor(self, actor_id):
        self.actor_id = actor_id
        return FakeActor(self)

    def dataset(self, dataset_id):
        self.dataset_id = dataset_id
        return FakeDataset(self.items)


@pytest.mark.asyncio
async def test_scrape_runs_actor_and_reshapes_dataset():
    client = FakeApifyClient([_item(), _item(ad_archive_id="778")])
    scraper = ApifyLibraryScraper(token="tok", actor_id="actor-x", client=client)

    ads = await scraper.scrape("zapatos", country="CO", max_ads=25)

    assert client.actor_id == "actor-x"
    assert client.dataset_id == "ds-1"
    assert client.run_input["count"] == 25
    assert "q=zapatos" in client.run_input["urls"][0]["url"]
    assert [ad["id"] for ad in ads] == ["777", "778"]
    assert all(ad["source"] == "apify_scraping" for ad in ads)


@pytest.mark.asyncio
async def test_scrape_propagates_actor_errors():
    scraper = ApifyLibraryScraper(token="tok", client=FakeApifyClient([], fail=True))
    with pytest.raises(RuntimeError, match="actor run failed"):
        await scraper.scrape("zapatos")


@pytest.mark.asyncio
async def test_scrape_without_token_fails():
    scraper = ApifyLibraryScraper(token="")
    with pytest.raises(RuntimeError, match="APIFY_API_TOKEN"):
        await scraper.scrape("zapatos")
