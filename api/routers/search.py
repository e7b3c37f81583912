"""Ad search API -- runs one producer and returns hotness-ranked ads."""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from crawler.screenshot import AdScreenshotService
from database import async_session
from database.schemas import SearchRequest, SearchResponse
from processor.normalizer import NormalizedAd
from processor.search_pipeline import MissingAccessTokenError, SearchPipeline
from processor.search_store import save_complete_search

logger = logging.getLogger("adsfinder.api.search")

router = APIRouter(prefix="/api", tags=["search"])


def get_pipeline(request: Request) -> SearchPipeline:
    return SearchPipeline(screenshots=getattr(request.app.state, "screenshots", None))


async def capture_screenshots_task(service: AdScreenshotService, ads: list[NormalizedAd]):
    """Runs after the response; failures are only logged."""
    try:
        report = await service.capture_batch(ads)
        logger.info(
            "Screenshots: %d new, %d existing, %d failed",
            report.captured, report.existing, report.failed,
        )
    except Exception as exc:
        logger.error("Screenshot batch failed: %s", exc)


async def save_search_task(
    search_name: str,
    body: SearchRequest,
    response: SearchResponse,
    session_factory=async_session,
):
    try:
        async with session_factory() as session:
            await save_complete_search(
                session,
                search_name,
                body.model_dump(),
                response.data,
                response.source,
            )
    except Exception as exc:
        logger.error("Saving search '%s' failed: %s", search_name, exc)


@router.post("/search", response_model=SearchResponse)
async def search_ads(
    body: SearchRequest,
    background_tasks: BackgroundTasks,
    pipeline: SearchPipeline = Depends(get_pipeline),
):
    """Search ads and rank them by hotness (score, variants, days running)."""
    try:
        outcome = await pipeline.run(body)
    except MissingAccessTokenError as exc:
        raise HTTPException(status_code=500, detail={"message": str(exc)})
    except Exception as exc:
        logger.error("Search failed (%s): %s", type(exc).__name__, exc)
        raise HTTPException(
            status_code=500,
            detail={"message": "Error searching ads", "error": str(exc)},
        )

    if outcome.capture_screenshots and pipeline.screenshots is not None:
        background_tasks.add_task(capture_screenshots_task, pipeline.screenshots, outcome.response.data)
    if outcome.save_name:
        background_tasks.add_task(save_search_task, outcome.save_name, body, outcome.response)

    return outcome.response
