"""Minimum-days post-filter.

Used only when the producer could not turn "minimum days running" into a
query-time date bound: Apify results, searches with an explicit end date, and
direct-URL searches.
"""

from __future__ import annotations

from datetime import datetime

from loguru import logger

from processor.normalizer import (
    SOURCE_APIFY,
    days_between,
    days_from_active_time,
    parse_timestamp,
    utcnow,
)


def needs_post_filter(
    source: str | None,
    min_days: int,
    date_to: str | None = None,
    direct_url: str | None = None,
) -> bool:
    if min_days <= 0:
        return False
    return source == SOURCE_APIFY or bool(date_to) or bool(direct_url)


def effective_days_running(ad: dict, now: datetime | None = None) -> int | None:
    """Age of the ad in days, or None when it cannot be determined.

    A start time in the future (misread unix timestamps) falls back to
    ``total_active_time``.
    """
    now = now or utcnow()
    start = parse_timestamp(ad.get("ad_delivery_start_time"))
    if start is None:
        return None
    if start > now:
        if ad.get("total_active_time"):
            return days_from_active_time(ad["total_active_time"])
        return None
    return days_between(start, now)


def filter_min_days(
    ads: list[dict],
    min_days: int,
    now: datetime | None = None,
) -> list[dict]:
    now = now or utcnow()
    kept: list[dict] = []
    for ad in ads:
        days = effective_days_running(ad, now)
        if days is not None and days >= min_days:
            kept.append(ad)
        else:
            logger.debug(
                "[filter] ad {}: {} days < {} minimum, dropped",
                ad.get("ad_archive_id") or ad.get("id"), days, min_days,
            )
    logger.info("[filter] post-filter: {} → {} ads (min {} days)", len(ads), len(kept), min_days)
    return kept
