"""Multi-query Graph API scraping.

Runs several keyword variations one after another, isolates failures per
variation and merges the results, dropping records that are identical field
for field.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import httpx
from loguru import logger

from crawler.config import finder_settings
from crawler.facebook_graph import BASE_FIELDS
from processor.normalizer import SOURCE_ENHANCED_SCRAPING, parse_timestamp

COMMERCIAL_SUFFIXES = ("oferta", "descuento")

COUNTRY_SUFFIXES = {
    "CO": "colombia",
    "MX": "mexico",
    "AR": "argentina",
    "CL": "chile",
    "PE": "peru",
    "EC": "ecuador",
    "ES": "españa",
    "US": "usa",
}

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def build_search_variations(search_terms: str, country: str | None = None) -> list[str]:
    """Original term, first word, cleaned spacing, country and commercial suffixes."""
    country_code = (country or finder_settings.default_country).upper()
    country_suffix = COUNTRY_SUFFIXES.get(country_code, country_code.lower())
    words = search_terms.split()
    return [
        search_terms,
        words[0] if words else search_terms,
        " ".join(words),
        f"{search_terms} {country_suffix}",
        *(f"{search_terms} {suffix}" for suffix in COMMERCIAL_SUFFIXES),
    ]


def record_identity(ad: dict) -> str:
    """Canonical JSON of the whole record; equal only if every field matches."""
    return json.dumps(ad, sort_keys=True, ensure_ascii=False, default=str)


def dedupe_records(batches: list[tuple[str, list[dict]]]) -> list[dict]:
    """Merge (variation, records) batches, keeping the first copy of each record."""
    unique: dict[str, dict] = {}
    for variation, records in batches:
        for record in records:
            key = record_identity(record)
            if key in unique:
                continue
            unique[key] = {
                **record,
                "source": SOURCE_ENHANCED_SCRAPING,
                "search_variation": variation,
                "scraped": True,
            }
    return list(unique.values())


def _creation_key(ad: dict) -> datetime:
    return parse_timestamp(ad.get("ad_creation_time")) or _EPOCH


class VariationScraper:
    """Broadens a keyword search by querying several variations of it."""

    source = SOURCE_ENHANCED_SCRAPING

    def __init__(
        self,
        access_token: str | None = None,
        client: httpx.AsyncClient | None = None,
        delay_ms: int | None = None,
    ):
        self.access_token = (
            finder_settings.facebook_access_token if access_token is None else access_token
        )
        self._client = client
        self.delay_ms = finder_settings.variation_delay_ms if delay_ms is None else delay_ms

    def _params(self, variation: str, country: str, ad_type: str) -> dict:
        return {
            "ad_type": ad_type or "ALL",
            "ad_active_status": "ACTIVE",
            "limit": finder_settings.variation_limit,
            "fields": ",".join(BASE_FIELDS),
            "search_terms": variation,
            "search_type": "KEYWORD_UNORDERED",
            "ad_reached_countries": json.dumps([country]),
            "is_targeted_country": "false",
            "access_token": self.access_token,
        }

    async def _fetch_variation(
        self, client: httpx.AsyncClient, variation: str, country: str, ad_type: str,
    ) -> list[dict] | None:
        try:
            response = await client.get(
                finder_settings.graph_base_url,
                params=self._params(variation, country, ad_type),
            )
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("[{}] variation '{}' failed: {}", self.source, variation, exc)
            return None

        if not isinstance(payload, dict):
            logger.warning("[{}] variation '{}' returned no object", self.source, variation)
            return None
        if payload.get("error"):
            error = payload["error"]
            message = error.get("message") if isinstance(error, dict) else error
            logger.warning("[{}] variation '{}' error: {}", self.source, variation, message)
            return None

        data = payload.get("data") or []
        logger.info("[{}] variation '{}': {} ads", self.source, variation, len(data))
        return list(data)

    async def scrape(
        self,
        search_terms: str,
        country: str | None = None,
        ad_type: str = "ALL",
        max_ads: int | None = None,
    ) -> list[dict]:
        if not self.access_token:
            raise RuntimeError("FACEBOOK_ACCESS_TOKEN is required for multi-query scraping")

        country = country or finder_settings.default_country
        max_ads = max_ads or finder_settings.web_scraping_max_ads
        variations = build_search_variations(search_terms, country)

        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(
            timeout=httpx.Timeout(finder_settings.graph_timeout_sec, connect=10.0),
        )
        batches: list[tuple[str, list[dict]]] = []
        try:
            for index, variation in enumerate(variations):
                if index and self.delay_ms:
                    await asyncio.sleep(self.delay_ms / 1000)
                records = await self._fetch_variation(client, variation, country, ad_type)
                if records is not None:
                    batches.append((variation, records))
        finally:
            if owns_client:
                await client.aclose()

        unique = dedupe_records(batches)
        unique.sort(key=_creation_key, reverse=True)
        final = unique[:max_ads]
        logger.info(
            "[{}] {} unique ads ({} kept) from {} variations",
            self.source, len(unique), len(final), len(variations),
        )
        return final
