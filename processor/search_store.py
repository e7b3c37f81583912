"""Complete-search persistence -- keeps scraped result sets reusable.

Apify runs cost money, so their results are stored automatically; other
searches are stored when the client asks for it.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Sequence

from loguru import logger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import CompleteSearch
from processor.normalizer import SOURCE_APIFY

TOP_PAGES_LIMIT = 10


def _as_dict(ad: Any) -> dict:
    if isinstance(ad, dict):
        return ad
    return ad.model_dump(mode="json")


def default_search_name(
    source: str, value: str, country: str | None, today: date | None = None,
) -> str:
    prefix = "Apify" if source == SOURCE_APIFY else "Search"
    today = today or date.today()
    return f"{prefix}-{value}-{country or 'CO'}-{today.isoformat()}"


def build_search_stats(ads: Sequence[Any]) -> dict:
    """Average hotness, long-running count and first distinct page names."""
    rows = [_as_dict(ad) for ad in ads]
    avg_hotness = (
        sum(row.get("hotness_score") or 0 for row in rows) / len(rows) if rows else 0.0
    )
    top_pages: list[str] = []
    for row in rows:
        name = row.get("page_name")
        if name and name not in top_pages:
            top_pages.append(name)
        if len(top_pages) >= TOP_PAGES_LIMIT:
            break
    return {
        "avg_hotness_score": avg_hotness,
        "long_running_ads": sum(1 for row in rows if row.get("is_long_running")),
        "top_pages": top_pages,
    }


async def find_search(session: AsyncSession, search_name: str) -> CompleteSearch | None:
    result = await session.execute(
        select(CompleteSearch).where(CompleteSearch.search_name == search_name).limit(1)
    )
    return result.scalar_one_or_none()


async def save_complete_search(
    session: AsyncSession,
    search_name: str,
    search_params: dict,
    ads: Sequence[Any],
    source: str,
) -> bool:
    """Insert the search unless one with the same name exists. Returns True if saved."""
    if await find_search(session, search_name) is not None:
        logger.info("[search_store] '{}' already exists, skipped", search_name)
        return False

    rows = [_as_dict(ad) for ad in ads]
    stats = build_search_stats(rows)
    session.add(CompleteSearch(
        search_name=search_name,
        search_params=search_params,
        source=source,
        total_results=len(rows),
        results=rows,
        search_metadata={
            "country": search_params.get("country") or "CO",
            "search_term": search_params.get("value"),
            "min_days": search_params.get("min_days") or 0,
            "ad_type": search_params.get("ad_type") or "ALL",
            "use_apify": source == SOURCE_APIFY,
        },
        avg_hotness_score=stats["avg_hotness_score"],
        long_running_ads=stats["long_running_ads"],
        top_pages=stats["top_pages"],
    ))
    await session.commit()
    logger.info("[search_store] saved '{}' with {} ads", search_name, len(rows))
    return True
