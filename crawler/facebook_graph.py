"""Facebook Graph Ads Archive fetcher.

Builds ``ads_archive`` queries and follows ``paging.next`` cursors. Pagination
stops early on the first failed page and returns what was collected so far;
there is no retry.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import date, timedelta

import httpx
from loguru import logger

from crawler.config import finder_settings
from processor.normalizer import POLITICAL_AD_TYPE

AUTH_ERROR_CODES = {102, 104, 190}
QUOTA_ERROR_CODES = {4, 17, 32, 613}

BASE_FIELDS = [
    "id", "ad_creation_time", "ad_delivery_start_time", "ad_delivery_stop_time",
    "ad_creative_bodies", "ad_creative_link_captions",
    "ad_creative_link_descriptions", "ad_creative_link_titles",
    "ad_snapshot_url", "languages", "page_id", "page_name", "publisher_platforms",
]
# Metrics are only returned for political/issue ads
POLITICAL_FIELDS = BASE_FIELDS + [
    "impressions", "spend", "currency", "demographic_distribution", "estimated_audience_size",
]


class FacebookApiError(RuntimeError):
    """Graph API returned an error payload."""

    def __init__(self, message: str, payload: dict | None = None):
        super().__init__(message)
        self.payload = payload or {}


@dataclass
class PageFetchResult:
    data: list[dict] = field(default_factory=list)
    total_pages: int = 0
    total_ads: int = 0
    paging: dict | None = None
    partial: bool = False


def search_fields(ad_type: str | None) -> list[str]:
    if ad_type == POLITICAL_AD_TYPE:
        return POLITICAL_FIELDS
    return BASE_FIELDS


def min_days_cutoff(min_days: int, today: date | None = None) -> str:
    """YYYY-MM-DD date an ad must have started by to have run ``min_days``."""
    today = today or date.today()
    return (today - timedelta(days=min_days)).isoformat()


def build_archive_params(
    *,
    search_type: str = "keyword",
    value: str = "",
    access_token: str,
    country: str | None = None,
    ad_type: str | None = None,
    search_phrase_type: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    min_days: int = 0,
    media_type: str | None = None,
    languages: list[str] | None = None,
    platforms: list[str] | None = None,
    limit: int | None = None,
    today: date | None = None,
) -> dict:
    """Query parameters for ``/ads_archive``.

    ``min_days`` becomes an ``ad_delivery_date_max`` bound unless an explicit
    ``date_to`` was given, in which case the pipeline post-filters instead.
    """
    params: dict = {
        "ad_type": ad_type or "ALL",
        "ad_active_status": "ACTIVE",
        "limit": limit or finder_settings.graph_page_limit,
        "fields": ",".join(search_fields(ad_type)),
    }

    if search_type == "keyword":
        params["search_terms"] = value
        params["search_type"] = (
            "KEYWORD_EXACT_PHRASE" if search_phrase_type == "exact" else "KEYWORD_UNORDERED"
        )
    else:
        params["search_page_ids"] = f"[{value}]"

    reached = country if country and country != "ALL" else finder_settings.default_country
    params["ad_reached_countries"] = json.dumps([reached])
    params["is_targeted_country"] = "false"

    if date_from:
        params["ad_delivery_date_min"] = date_from
    if date_to:
        params["ad_delivery_date_max"] = date_to
    elif min_days > 0:
        params["ad_delivery_date_max"] = min_days_cutoff(min_days, today)
        logger.info(
            "[facebook_api] min {} days → ad_delivery_date_max={}",
            min_days, params["ad_delivery_date_max"],
        )

    if media_type and media_type != "ALL":
        params["media_type"] = media_type
    if languages:
        params["languages"] = json.dumps(list(languages))
    if platforms:
        params["publisher_platforms"] = json.dumps(list(platforms))

    params["access_token"] = access_token
    return params


def redact_params(params: dict | None) -> dict:
    return {k: ("***" if k == "access_token" else v) for k, v in (params or {}).items()}


def classify_graph_error(status_code: int, payload: dict | None) -> str:
    """auth / quota / transient / fatal, for logging."""
    error = payload.get("error") if isinstance(payload, dict) else None
    code: int | None = None
    message = ""
    if isinstance(error, dict):
        message = str(error.get("message") or "").lower()
        try:
            code = int(error["code"]) if error.get("code") is not None else None
        except (TypeError, ValueError):
            code = None

    if status_code in {401, 403} or code in AUTH_ERROR_CODES:
        return "auth"
    if status_code == 429 or code in QUOTA_ERROR_CODES or "rate limit" in message:
        return "quota"
    if status_code >= 500 or status_code in {408, 409, 425}:
        return "transient"
    return "fatal"


class FacebookGraphFetcher:
    """Async Graph API client for the Ads Archive endpoint."""

    source = "facebook_api"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        page_delay_ms: int | None = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.page_delay_ms = (
            finder_settings.graph_page_delay_ms if page_delay_ms is None else page_delay_ms
        )

    async def start(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(finder_settings.graph_timeout_sec, connect=10.0),
            )
            self._owns_client = True

    async def stop(self):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.stop()

    async def _get_json(self, url: str, params: dict | None) -> tuple[int, dict]:
        if not self._client:
            raise RuntimeError("FacebookGraphFetcher client is not initialized")
        response = await self._client.get(url, params=params)
        try:
            payload = response.json()
        except ValueError:
            payload = {"error": {"message": response.text[:240] or f"http {response.status_code}"}}
        if not isinstance(payload, dict):
            payload = {"error": {"message": "unexpected response shape"}}
        return response.status_code, payload

    async def fetch_single_page(self, url: str, params: dict | None = None) -> PageFetchResult:
        """One page for client-driven pagination. Error payloads raise."""
        status_code, payload = await self._get_json(url, params)
        if payload.get("error"):
            category = classify_graph_error(status_code, payload)
            logger.error("[{}] single page error [{}]: {}", self.source, category, payload["error"])
            raise FacebookApiError(json.dumps(payload["error"]), payload)

        data = payload.get("data") or []
        next_url = (payload.get("paging") or {}).get("next")
        return PageFetchResult(
            data=list(data),
            total_pages=1,
            total_ads=len(data),
            paging=payload.get("paging") if next_url else None,
        )

    async def fetch_pages(
        self,
        url: str,
        params: dict | None = None,
        max_pages: int | None = None,
    ) -> PageFetchResult:
        """Follow ``paging.next`` for up to ``max_pages`` pages.

        Any failed page ends pagination; collected pages are returned with
        ``partial=True``.
        """
        max_pages = max_pages or finder_settings.graph_max_pages
        result = PageFetchResult()
        next_url: str | None = url
        next_params = params

        while next_url and result.total_pages < max_pages:
            page_index = result.total_pages + 1
            logger.info("[{}] fetching page {}/{}", self.source, page_index, max_pages)
            try:
                status_code, payload = await self._get_json(next_url, next_params)
            except httpx.HTTPError as exc:
                logger.error("[{}] page {} request failed: {}", self.source, page_index, exc)
                result.partial = True
                break

            if payload.get("error"):
                category = classify_graph_error(status_code, payload)
                logger.error(
                    "[{}] page {} error [{}] status={}: {}",
                    self.source, page_index, category, status_code, payload["error"],
                )
                result.partial = True
                break

            data = payload.get("data") or []
            if data:
                result.data.extend(data)
                result.total_ads += len(data)
                logger.info(
                    "[{}] page {}: {} ads (total {})",
                    self.source, page_index, len(data), result.total_ads,
                )

            next_url = (payload.get("paging") or {}).get("next")
            next_params = None
            result.total_pages += 1

            if next_url and result.total_pages < max_pages and self.page_delay_ms:
                await asyncio.sleep(self.page_delay_ms / 1000)

        result.paging = {"next": next_url} if next_url else None
        logger.info(
            "[{}] pagination done: {} pages, {} ads{}",
            self.source, result.total_pages, result.total_ads,
            " (partial)" if result.partial else "",
        )
        return result
