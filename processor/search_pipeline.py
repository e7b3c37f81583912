"""Search pipeline -- producer → post-filter → normalize → rank → response.

Exactly one producer runs per request, chosen by the request flags:

  use_apify        → Apify Ads Library actor        (apify_scraping)
  use_web_scraping → multi-query Graph scraping     (enhanced_api_scraping)
  single_page      → one Graph API page             (facebook_api)
  otherwise        → up to 10 Graph API pages       (facebook_api)

Apify and multi-query scraping only apply to keyword searches without a
direct URL. Producer errors propagate to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote

from loguru import logger

from crawler.apify_library import ApifyLibraryScraper
from crawler.config import finder_settings
from crawler.facebook_graph import (
    FacebookGraphFetcher,
    PageFetchResult,
    build_archive_params,
    redact_params,
)
from crawler.screenshot import AdScreenshotService
from crawler.variation_scraper import VariationScraper
from database.schemas import AutoSaveInfo, SearchRequest, SearchResponse
from processor.normalizer import (
    SOURCE_APIFY,
    SOURCE_ENHANCED_SCRAPING,
    SOURCE_FACEBOOK_API,
    normalize_ads,
    utcnow,
)
from processor.post_filter import filter_min_days, needs_post_filter
from processor.ranking import log_top_ads, sort_by_hotness, summarize_sources
from processor.search_store import default_search_name

# Most Apify ads are only a few days old; higher minimums burn paid runs
APIFY_HIGH_MIN_DAYS = 10


class MissingAccessTokenError(RuntimeError):
    """FACEBOOK_ACCESS_TOKEN is not configured."""


@dataclass
class SearchOutcome:
    response: SearchResponse
    save_name: str | None = None
    capture_screenshots: bool = False


def facebook_library_url(request: SearchRequest) -> str:
    """Public Ads Library URL equivalent to the search, for side-by-side checks."""
    ad_type = (request.ad_type or "ALL").lower()
    country = request.country or finder_settings.default_country
    return (
        "https://www.facebook.com/ads/library/"
        f"?active_status=active&ad_type={ad_type}&country={country}"
        "&is_targeted_country=false&media_type=all"
        f"&q={quote(request.value or '')}&search_type=keyword_unordered"
    )


class SearchPipeline:
    def __init__(
        self,
        access_token: str | None = None,
        fetcher: FacebookGraphFetcher | None = None,
        apify: ApifyLibraryScraper | None = None,
        variation: VariationScraper | None = None,
        screenshots: AdScreenshotService | None = None,
    ):
        self.access_token = (
            finder_settings.facebook_access_token if access_token is None else access_token
        )
        self._fetcher = fetcher
        self._apify = apify
        self._variation = variation
        self.screenshots = screenshots

    @property
    def apify(self) -> ApifyLibraryScraper:
        if self._apify is None:
            self._apify = ApifyLibraryScraper()
        return self._apify

    @property
    def variation(self) -> VariationScraper:
        if self._variation is None:
            self._variation = VariationScraper(access_token=self.access_token)
        return self._variation

    # ── Graph query ──

    def _graph_request(self, request: SearchRequest) -> tuple[str, dict | None]:
        if request.url:
            logger.debug("[search] direct URL: {}", request.url)
            return request.url, None

        params = build_archive_params(
            search_type=request.search_type,
            value=request.value,
            access_token=self.access_token,
            country=request.country,
            ad_type=request.ad_type,
            search_phrase_type=request.search_phrase_type,
            date_from=request.date_from,
            date_to=request.date_to,
            min_days=request.min_days,
            media_type=request.media_type,
            languages=request.languages,
            platforms=request.platforms,
        )
        logger.debug("[search] graph params: {}", redact_params(params))
        return finder_settings.graph_base_url, params

    async def _fetch_graph(self, request: SearchRequest) -> PageFetchResult:
        url, params = self._graph_request(request)
        if self._fetcher is not None:
            return await self._run_fetcher(self._fetcher, request, url, params)
        async with FacebookGraphFetcher() as fetcher:
            return await self._run_fetcher(fetcher, request, url, params)

    @staticmethod
    async def _run_fetcher(
        fetcher: FacebookGraphFetcher, request: SearchRequest, url: str, params: dict | None,
    ) -> PageFetchResult:
        if request.single_page:
            return await fetcher.fetch_single_page(url, params)
        return await fetcher.fetch_pages(url, params, finder_settings.graph_max_pages)

    # ── Producers ──

    async def _produce(self, request: SearchRequest) -> tuple[PageFetchResult, str, str | None]:
        country = request.country or finder_settings.default_country
        ad_type = request.ad_type or "ALL"

        if request.use_apify and request.is_keyword_search:
            max_ads = request.apify_count or finder_settings.apify_default_count
            if request.min_days > APIFY_HIGH_MIN_DAYS:
                logger.warning(
                    "[search] min {} days is high for Apify; most scraped ads run 1-{} days",
                    request.min_days, APIFY_HIGH_MIN_DAYS,
                )
            ads = await self.apify.scrape(
                request.value, country, ad_type, max_ads, request.min_days,
            )
            message = f"Apify scraping completed: {len(ads)} ads extracted"
            if request.min_days > 0:
                message += f" (minimum {request.min_days} days running)"
            return PageFetchResult(data=ads, total_pages=1, total_ads=len(ads)), SOURCE_APIFY, message

        if request.use_web_scraping and request.is_keyword_search:
            ads = await self.variation.scrape(
                request.value, country, ad_type, finder_settings.web_scraping_max_ads,
            )
            message = f"Multi-query search completed: {len(ads)} unique ads found"
            return (
                PageFetchResult(data=ads, total_pages=1, total_ads=len(ads)),
                SOURCE_ENHANCED_SCRAPING,
                message,
            )

        page = await self._fetch_graph(request)
        for ad in page.data:
            ad.setdefault("source", SOURCE_FACEBOOK_API)
        return page, SOURCE_FACEBOOK_API, None

    # ── Entry point ──

    async def run(self, request: SearchRequest, now: datetime | None = None) -> SearchOutcome:
        if not self.access_token:
            raise MissingAccessTokenError("Access token not configured on server.")
        now = now or utcnow()

        if not request.single_page and self.screenshots is not None:
            self.screenshots.clear_screenshots()

        page, source, message = await self._produce(request)
        raw_ads = page.data

        if needs_post_filter(source, request.min_days, request.date_to, request.url):
            raw_ads = filter_min_days(raw_ads, request.min_days, now=now)
        elif request.min_days > 0:
            logger.info("[search] min days applied in the query, no post-filter needed")

        ads = sort_by_hotness(normalize_ads(raw_ads, ad_type=request.ad_type or "ALL", now=now))
        log_top_ads(ads)
        logger.info("[search] {} ads ranked, sources: {}", len(ads), summarize_sources(ads))

        response = SearchResponse(
            data=ads,
            total_pages=page.total_pages,
            total_ads=len(ads),
            paging=page.paging,
            source=source,
            message=message,
            facebook_library_url=None if request.url else facebook_library_url(request),
        )

        save_name = None
        if ads and (source == SOURCE_APIFY or request.auto_save_complete):
            save_name = request.complete_name or default_search_name(
                source, request.value, request.country, today=now.date(),
            )
            response.auto_saved = AutoSaveInfo(
                saved=False,
                scheduled=True,
                search_name=save_name,
                message=f"Search '{save_name}' will be saved for reuse",
            )

        return SearchOutcome(
            response=response,
            save_name=save_name,
            capture_screenshots=not request.single_page and bool(ads),
        )
