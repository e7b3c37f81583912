"""Apify Facebook Ads Library scraper adapter.

Runs a hosted actor against a public Ads Library search URL, waits for the run
to finish and reshapes every dataset item into the pipeline's ad record shape.
Errors from the actor or the dataset read propagate to the caller.
"""

from __future__ import annotations

import time
from datetime import date, datetime, timezone
from urllib.parse import urlencode

from apify_client import ApifyClientAsync
from loguru import logger

from crawler.config import finder_settings
from crawler.facebook_graph import min_days_cutoff
from processor.hotness import calculate_hotness_score
from processor.normalizer import (
    NOT_AVAILABLE,
    SOURCE_APIFY,
    compute_days_running,
    parse_timestamp,
    utcnow,
)

ADS_LIBRARY_URL = "https://www.facebook.com/ads/library/"
DEFAULT_PAGE_NAME = "Página no disponible"


def build_ads_library_url(
    search_terms: str,
    country: str,
    ad_type: str = "ALL",
    min_days: int = 0,
    today: date | None = None,
) -> str:
    params = {
        "active_status": "active",
        "ad_type": (ad_type or "ALL").lower(),
        "country": country,
        "is_targeted_country": "false",
        "media_type": "all",
        "q": search_terms,
        "search_type": "keyword_unordered",
    }
    if min_days > 0:
        params["start_date[max]"] = min_days_cutoff(min_days, today)
        logger.info(
            "[apify] only ads started before {} (min {} days running)",
            params["start_date[max]"], min_days,
        )
    return f"{ADS_LIBRARY_URL}?{urlencode(params)}"


def build_actor_input(search_url: str, country: str, max_ads: int) -> dict:
    return {
        "urls": [{"url": search_url}],
        "count": max_ads,
        "period": "",
        "scrapePageAds.activeStatus": "all",
        "scrapePageAds.countryCode": country or "ALL",
    }


# Stand-in for epoch values too large to represent (milliseconds sent as seconds)
FAR_FUTURE_ISO = datetime.max.replace(tzinfo=timezone.utc).isoformat()


def _unix_to_iso(value) -> str | None:
    if not value:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat()
    except (ValueError, OverflowError, OSError):
        # Present but out of range: keep it as a future start so the
        # minimum-days filter can fall back to total_active_time
        return FAR_FUTURE_ISO if seconds > 0 else None


def _single(value) -> list[str]:
    return [value] if value else []


def reshape_apify_item(item: dict, index: int, now: datetime | None = None) -> dict:
    """Convert one actor dataset item into an ad record with days/hotness set."""
    now = now or utcnow()
    snapshot = item.get("snapshot") or {}
    body = snapshot.get("body") or {}
    videos = snapshot.get("videos") or []

    start_iso = _unix_to_iso(item.get("start_date"))
    stop_iso = _unix_to_iso(item.get("end_date"))
    start_dt = parse_timestamp(start_iso)
    # A future start has no age yet; the post-filter decides with total_active_time
    span = compute_days_running(
        start_iso if start_dt is None or start_dt <= now else None, stop_iso, now=now,
    )
    collation_count = item.get("collation_count") or 1

    impressions_text = (item.get("impressions_with_index") or {}).get("impressions_text")
    currency = item.get("currency") or NOT_AVAILABLE

    return {
        "id": str(item.get("ad_archive_id") or f"apify_{int(time.time() * 1000)}_{index}"),
        "ad_archive_id": item.get("ad_archive_id"),
        "source": SOURCE_APIFY,
        "scraped": True,
        "page_name": (
            item.get("page_name")
            or snapshot.get("page_name")
            or snapshot.get("current_page_name")
            or DEFAULT_PAGE_NAME
        ),
        "page_id": str(item.get("page_id") or snapshot.get("page_id") or "N/A"),
        "ad_creative_bodies": _single(body.get("text")),
        "ad_creative_link_captions": _single(snapshot.get("caption")),
        "ad_creative_link_descriptions": _single(snapshot.get("link_description")),
        "ad_creative_link_titles": _single(snapshot.get("title")),
        "ad_creation_time": start_iso,
        "ad_delivery_start_time": start_iso,
        "ad_delivery_stop_time": stop_iso,
        "ad_snapshot_url": item.get("ad_library_url") or "",
        "publisher_platforms": item.get("publisher_platform") or [],
        "languages": [],
        "impressions": (
            {"lower_bound": impressions_text, "upper_bound": impressions_text}
            if impressions_text
            else {"lower_bound": NOT_AVAILABLE, "upper_bound": NOT_AVAILABLE}
        ),
        "spend": {"lower_bound": item.get("spend") or NOT_AVAILABLE, "currency": currency},
        "currency": currency,
        "days_running": span.days_running,
        "is_long_running": span.is_long_running,
        "is_indefinite": span.is_indefinite,
        "is_active": bool(item.get("is_active")),
        "total_active_time": item.get("total_active_time") or 0,
        "collation_count": collation_count,
        "hotness_score": calculate_hotness_score(collation_count, span.days_running),
        "apify_data": {
            "ad_library_url": item.get("ad_library_url"),
            "page_profile_uri": snapshot.get("page_profile_uri"),
            "link_url": snapshot.get("link_url"),
            "images": snapshot.get("images") or [],
            "videos": videos,
            "page_profile_picture_url": snapshot.get("page_profile_picture_url"),
            "video_preview_image_url": (videos[0] or {}).get("video_preview_image_url") if videos else None,
            "page_categories": snapshot.get("page_categories") or [],
            "page_like_count": snapshot.get("page_like_count") or 0,
            "display_format": snapshot.get("display_format"),
            "cta_text": snapshot.get("cta_text"),
            "cta_type": snapshot.get("cta_type"),
            "reach_estimate": item.get("reach_estimate"),
            "contains_sensitive_content": item.get("contains_sensitive_content"),
            "start_date_formatted": item.get("start_date_formatted"),
            "end_date_formatted": item.get("end_date_formatted"),
            "total_ads_from_page": item.get("total"),
            "ads_count": item.get("ads_count"),
            "entity_type": item.get("entity_type"),
            "gated_type": item.get("gated_type"),
            "original_item": item,
        },
    }


class ApifyLibraryScraper:
    """Runs the Ads Library actor and returns reshaped ad records."""

    source = SOURCE_APIFY

    def __init__(
        self,
        token: str | None = None,
        actor_id: str | None = None,
        client: ApifyClientAsync | None = None,
    ):
        self.token = finder_settings.apify_api_token if token is None else token
        self.actor_id = actor_id or finder_settings.apify_actor_id
        self._client = client

    def _get_client(self) -> ApifyClientAsync:
        if self._client is None:
            if not self.token:
                raise RuntimeError("APIFY_API_TOKEN is not configured")
            self._client = ApifyClientAsync(self.token)
        return self._client

    async def scrape(
        self,
        search_terms: str,
        country: str | None = None,
        ad_type: str = "ALL",
        max_ads: int | None = None,
        min_days: int = 0,
    ) -> list[dict]:
        client = self._get_client()
        country = country or finder_settings.default_country
        max_ads = max_ads or finder_settings.apify_default_count

        search_url = build_ads_library_url(search_terms, country, ad_type, min_days)
        logger.info("[{}] scraping {}", self.source, search_url)

        run = await client.actor(self.actor_id).call(
            run_input=build_actor_input(search_url, country, max_ads),
        )
        if not run:
            raise RuntimeError(f"Apify actor {self.actor_id} returned no run")

        dataset = await client.dataset(run["defaultDatasetId"]).list_items()
        items = list(dataset.items or [])

        now = utcnow()
        ads = [reshape_apify_item(item, index, now=now) for index, item in enumerate(items)]
        logger.info("[{}] scraping done: {} ads", self.source, len(ads))
        return ads
