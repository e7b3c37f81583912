"""Ad normalization -- producer raw records → canonical NormalizedAd.

Every producer (Graph API, Apify, multi-query scraping) feeds its raw dicts
through ``normalize_ads`` before ranking. The ``source`` tag selects a typed
producer record (``FacebookRawAd`` / ``ScrapedRawAd`` / ``ApifyRawAd``), which
its own mapping function turns into the shared shape. Missing or malformed
fields are defaulted, never treated as errors.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Iterable, NamedTuple
from uuid import uuid4

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator

from processor.hotness import calculate_hotness_score, flame_emoji

SOURCE_FACEBOOK_API = "facebook_api"
SOURCE_APIFY = "apify_scraping"
SOURCE_ENHANCED_SCRAPING = "enhanced_api_scraping"
SOURCE_WEB_SCRAPING = "web_scraping"

POLITICAL_AD_TYPE = "POLITICAL_AND_ISSUE_ADS"

DEFAULT_PAGE_ID = "N/A"
DEFAULT_PAGE_NAME = "Página sin nombre"
NOT_AVAILABLE = "N/A"
POLITICAL_ONLY_NOTE = "Solo disponible para anuncios políticos"

LONG_RUNNING_DAYS = 30
SECONDS_PER_DAY = 24 * 60 * 60

CREATIVE_LIST_FIELDS = (
    "ad_creative_bodies",
    "ad_creative_link_captions",
    "ad_creative_link_descriptions",
    "ad_creative_link_titles",
)
TIME_FIELDS = ("ad_creation_time", "ad_delivery_start_time", "ad_delivery_stop_time")

# Fields the Graph API only returns for political/issue ads
POLITICAL_ONLY_DEFAULTS: dict[str, Any] = {
    "age_country_gender_reach_breakdown": [],
    "beneficiary_payers": [],
    "br_total_reach": None,
    "bylines": None,
    "delivery_by_region": [],
    "eu_total_reach": None,
    "target_ages": [],
    "target_gender": None,
    "target_locations": [],
    "total_reach_by_location": [],
}


# ── Days running ──

class DaysRunning(NamedTuple):
    days_running: int
    is_long_running: bool
    is_indefinite: bool


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value) -> datetime | None:
    """Parse Graph/Apify timestamps into aware UTC datetimes.

    Accepts ``2024-01-15``, ``2024-01-15T08:00:00+0000``, ``...Z`` and
    ``datetime`` objects. Naive values are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # +0000 → +00:00
        if len(text) > 5 and text[-5] in "+-" and text[-4:].isdigit() and "T" in text:
            text = f"{text[:-2]}:{text[-2:]}"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def days_between(start: datetime, now: datetime) -> int:
    """Whole days between two instants, rounded up, never negative."""
    seconds = abs((now - start).total_seconds())
    return math.ceil(seconds / SECONDS_PER_DAY)


def compute_days_running(start, stop=None, now: datetime | None = None) -> DaysRunning:
    now = now or utcnow()
    start_dt = parse_timestamp(start)
    if start_dt is not None:
        days = days_between(start_dt, now)
    else:
        days = 0
    return DaysRunning(
        days_running=days,
        is_long_running=days > LONG_RUNNING_DAYS,
        is_indefinite=not stop,
    )


def days_from_active_time(total_active_time) -> int:
    """Convert Apify ``total_active_time`` seconds to whole days."""
    try:
        seconds = float(total_active_time or 0)
    except (TypeError, ValueError):
        return 0
    return max(0, int(seconds // SECONDS_PER_DAY))


# ── Model ──

class NormalizedAd(BaseModel):
    """Canonical ad returned to the client. Unknown source fields pass through."""

    model_config = ConfigDict(extra="allow")

    id: str
    source: str = SOURCE_FACEBOOK_API
    page_id: str = DEFAULT_PAGE_ID
    page_name: str = DEFAULT_PAGE_NAME
    ad_creative_bodies: list[str] = Field(default_factory=list)
    ad_creative_link_captions: list[str] = Field(default_factory=list)
    ad_creative_link_descriptions: list[str] = Field(default_factory=list)
    ad_creative_link_titles: list[str] = Field(default_factory=list)
    ad_creation_time: str | None = None
    ad_delivery_start_time: str | None = None
    ad_delivery_stop_time: str | None = None
    ad_snapshot_url: str = ""
    languages: list[Any] = Field(default_factory=list)
    publisher_platforms: list[Any] = Field(default_factory=list)
    days_running: int = Field(default=0, ge=0)
    is_long_running: bool = False
    is_indefinite: bool = True
    collation_count: int = Field(default=1, ge=1)
    hotness_score: int = Field(default=1, ge=1, le=5)
    flame_emoji: str = ""
    impressions: dict | None = None
    spend: dict | None = None
    currency: str | None = None
    demographic_distribution: list[Any] = Field(default_factory=list)
    estimated_audience_size: Any = None

    @field_validator(*CREATIVE_LIST_FIELDS, mode="before")
    @classmethod
    def clean_text_list(cls, v) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(item) for item in v if item is not None]

    @field_validator("languages", "publisher_platforms", "demographic_distribution", mode="before")
    @classmethod
    def none_to_list(cls, v) -> list:
        return v or []


# ── Producer records ──

def _as_int(value) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class _RawAdBase(BaseModel):
    """Fields any producer may send. Malformed values degrade to None."""

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    source: str = SOURCE_FACEBOOK_API
    page_id: str | None = None
    page_name: str | None = None
    ad_creative_bodies: list[str] = Field(default_factory=list)
    ad_creative_link_captions: list[str] = Field(default_factory=list)
    ad_creative_link_descriptions: list[str] = Field(default_factory=list)
    ad_creative_link_titles: list[str] = Field(default_factory=list)
    ad_creation_time: str | None = None
    ad_delivery_start_time: str | None = None
    ad_delivery_stop_time: str | None = None
    ad_snapshot_url: str | None = None
    languages: list[Any] = Field(default_factory=list)
    publisher_platforms: list[Any] = Field(default_factory=list)
    collation_count: int | None = None
    hotness_score: int | None = None
    days_running: int | None = None
    impressions: Any = None
    spend: Any = None
    currency: Any = None
    demographic_distribution: Any = None
    estimated_audience_size: Any = None

    @field_validator(*CREATIVE_LIST_FIELDS, mode="before")
    @classmethod
    def clean_text_list(cls, v) -> list[str]:
        if not v:
            return []
        if isinstance(v, str):
            return [v]
        if not isinstance(v, (list, tuple)):
            return [str(v)]
        return [str(item) for item in v if item is not None]

    @field_validator("languages", "publisher_platforms", mode="before")
    @classmethod
    def as_list(cls, v) -> list:
        if not v:
            return []
        return list(v) if isinstance(v, (list, tuple)) else [v]

    @field_validator("id", "page_id", "page_name", "ad_snapshot_url", *TIME_FIELDS, mode="before")
    @classmethod
    def as_text(cls, v) -> str | None:
        if v is None or v == "" or isinstance(v, (dict, list)):
            return None
        return str(v)

    @field_validator("collation_count", "hotness_score", "days_running", mode="before")
    @classmethod
    def as_int(cls, v) -> int | None:
        return _as_int(v)


class FacebookRawAd(_RawAdBase):
    """Graph Ads Archive record; also the fallback for untagged records."""


class ScrapedRawAd(_RawAdBase):
    """Graph record found through one of several keyword variations."""

    search_variation: str | None = None
    scraped: bool = True


class ApifyRawAd(_RawAdBase):
    """Actor dataset item already reshaped; days running is precomputed."""

    ad_archive_id: str | None = None
    is_long_running: bool | None = None
    is_indefinite: bool | None = None
    total_active_time: float | None = None
    apify_data: dict = Field(default_factory=dict)

    @field_validator("ad_archive_id", mode="before")
    @classmethod
    def archive_id_text(cls, v) -> str | None:
        return None if v in (None, "") else str(v)

    @field_validator("apify_data", mode="before")
    @classmethod
    def media_bag(cls, v) -> dict:
        return v if isinstance(v, dict) else {}

    @field_validator("total_active_time", mode="before")
    @classmethod
    def active_seconds(cls, v) -> float | None:
        try:
            return float(v) if v is not None else None
        except (TypeError, ValueError):
            return None


RawAd = FacebookRawAd | ScrapedRawAd | ApifyRawAd

RAW_AD_VARIANTS: dict[str, type[_RawAdBase]] = {
    SOURCE_FACEBOOK_API: FacebookRawAd,
    SOURCE_ENHANCED_SCRAPING: ScrapedRawAd,
    SOURCE_WEB_SCRAPING: ScrapedRawAd,
    SOURCE_APIFY: ApifyRawAd,
}


def parse_raw_ad(raw: dict | RawAd) -> RawAd:
    """Pick the producer variant from the ``source`` tag."""
    if isinstance(raw, _RawAdBase):
        return raw
    source = raw.get("source") or SOURCE_FACEBOOK_API
    variant = RAW_AD_VARIANTS.get(source, FacebookRawAd)
    return variant.model_validate({**raw, "source": source})


# ── Per-variant mapping ──

def _common_fields(raw: _RawAdBase) -> dict:
    ad = raw.model_dump()
    ad["id"] = raw.id or f"ad_{uuid4().hex[:16]}"
    if not raw.page_id:
        logger.warning("[normalizer] ad {} ({}) has no page_id", ad["id"], raw.source)
    ad["page_id"] = raw.page_id or DEFAULT_PAGE_ID
    ad["page_name"] = raw.page_name or DEFAULT_PAGE_NAME
    ad["ad_snapshot_url"] = raw.ad_snapshot_url or ""
    return ad


def _apply_days(ad: dict, raw: _RawAdBase, now: datetime | None) -> None:
    if raw.days_running is None:
        span = compute_days_running(
            raw.ad_delivery_start_time, raw.ad_delivery_stop_time, now=now,
        )
        ad.update(span._asdict())
        return
    ad["days_running"] = max(0, raw.days_running)
    if ad.get("is_long_running") is None:
        ad["is_long_running"] = ad["days_running"] > LONG_RUNNING_DAYS
    if ad.get("is_indefinite") is None:
        ad["is_indefinite"] = not raw.ad_delivery_stop_time


def map_facebook_ad(raw: FacebookRawAd, now: datetime | None = None) -> dict:
    ad = _common_fields(raw)
    _apply_days(ad, raw, now)
    return ad


def map_scraped_ad(raw: ScrapedRawAd, now: datetime | None = None) -> dict:
    ad = _common_fields(raw)
    _apply_days(ad, raw, now)
    ad["scraped"] = True
    return ad


def map_apify_ad(raw: ApifyRawAd, now: datetime | None = None) -> dict:
    ad = _common_fields(raw)
    if not raw.id and raw.ad_archive_id:
        ad["id"] = raw.ad_archive_id
    _apply_days(ad, raw, now)
    return ad


# ── Normalization ──

def _apply_metrics(ad: dict, ad_type: str) -> None:
    if ad_type == POLITICAL_AD_TYPE:
        ad["impressions"] = ad.get("impressions") or {
            "lower_bound": NOT_AVAILABLE, "upper_bound": NOT_AVAILABLE,
        }
        ad["spend"] = ad.get("spend") or {"lower_bound": NOT_AVAILABLE, "currency": ""}
        ad["currency"] = ad.get("currency") or NOT_AVAILABLE
        ad["demographic_distribution"] = ad.get("demographic_distribution") or []
        ad["estimated_audience_size"] = ad.get("estimated_audience_size") or None
        return

    # Graph API only returns metrics for political/issue ads
    ad["impressions"] = {
        "lower_bound": NOT_AVAILABLE,
        "upper_bound": NOT_AVAILABLE,
        "note": POLITICAL_ONLY_NOTE,
    }
    ad["spend"] = {"lower_bound": NOT_AVAILABLE, "currency": "", "note": POLITICAL_ONLY_NOTE}
    ad["currency"] = NOT_AVAILABLE
    ad["demographic_distribution"] = []
    ad["estimated_audience_size"] = None


def map_raw_ad(raw: RawAd, now: datetime | None = None) -> dict:
    if isinstance(raw, ApifyRawAd):
        return map_apify_ad(raw, now)
    if isinstance(raw, ScrapedRawAd):
        return map_scraped_ad(raw, now)
    return map_facebook_ad(raw, now)


def normalize_ad(
    raw: dict | RawAd,
    ad_type: str = "ALL",
    now: datetime | None = None,
) -> NormalizedAd:
    """Fill defaults and derived fields for a single raw ad record."""
    ad = map_raw_ad(parse_raw_ad(raw), now)

    ad["collation_count"] = max(1, ad.get("collation_count") or 1)

    # Precomputed scores are kept so producer and response agree
    score = ad.get("hotness_score")
    if not score or not 1 <= score <= 5:
        score = calculate_hotness_score(ad["collation_count"], ad["days_running"])
    ad["hotness_score"] = score
    ad["flame_emoji"] = flame_emoji(score)

    _apply_metrics(ad, ad_type)
    for key, value in POLITICAL_ONLY_DEFAULTS.items():
        ad[key] = list(value) if isinstance(value, list) else value

    return NormalizedAd.model_validate(ad)


def normalize_ads(
    raws: Iterable[dict],
    ad_type: str = "ALL",
    now: datetime | None = None,
) -> list[NormalizedAd]:
    now = now or utcnow()
    return [normalize_ad(raw, ad_type=ad_type, now=now) for raw in raws]
