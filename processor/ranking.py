"""Hotness ranking and source breakdown for search results."""

from __future__ import annotations

from collections import Counter
from typing import Any, Sequence, TypeVar

from loguru import logger

from processor.hotness import flame_emoji
from processor.normalizer import SOURCE_APIFY

T = TypeVar("T")


def _field(ad: Any, name: str):
    if isinstance(ad, dict):
        return ad.get(name)
    return getattr(ad, name, None)


def ranking_key(ad: Any) -> tuple[int, int, int]:
    return (
        int(_field(ad, "hotness_score") or 0),
        int(_field(ad, "collation_count") or 0),
        int(_field(ad, "days_running") or 0),
    )


def sort_by_hotness(ads: Sequence[T]) -> list[T]:
    """Hottest first: hotness_score, then collation_count, then days_running.

    ``sorted`` is stable, so ads with equal keys keep their producer order.
    """
    return sorted(ads, key=ranking_key, reverse=True)


def log_top_ads(ads: Sequence[Any], limit: int = 5) -> None:
    for index, ad in enumerate(ads[:limit], start=1):
        logger.info(
            "[sort] {}. {} {} - score {}/5 ({} variants, {} days)",
            index,
            flame_emoji(_field(ad, "hotness_score")),
            _field(ad, "page_name"),
            _field(ad, "hotness_score"),
            _field(ad, "collation_count"),
            _field(ad, "days_running"),
        )


def summarize_sources(ads: Sequence[Any]) -> dict[str, int]:
    """Count ads per source plus the Apify media breakdown."""
    counts: Counter[str] = Counter()
    for ad in ads:
        source = _field(ad, "source") or "unknown"
        counts[source] += 1
        if source != SOURCE_APIFY:
            continue
        apify_data = _field(ad, "apify_data") or {}
        has_images = bool(apify_data.get("images"))
        has_videos = bool(apify_data.get("videos"))
        if has_images:
            counts["apify_with_images"] += 1
        if has_videos:
            counts["apify_with_videos"] += 1
        if not has_images and not has_videos:
            counts["apify_text_only"] += 1
    return dict(counts)
