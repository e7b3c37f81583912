"""Ad snapshot screenshots -- batch capture with one owned browser.

The service launches Chromium lazily on the first batch and keeps it until
``stop()``. It is created once by the API lifespan and handed to the search
router; captures run after the response has been sent.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from loguru import logger
from playwright.async_api import Browser, Route, async_playwright

from crawler.config import finder_settings

BLOCKED_RESOURCE_TYPES = {"font", "media", "other"}
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
BATCH_PAUSE_SEC = 1.0
SETTLE_MS = 1_500


@dataclass
class BatchReport:
    captured: int = 0
    existing: int = 0
    failed: int = 0


def _field(ad: Any, name: str):
    if isinstance(ad, dict):
        return ad.get(name)
    return getattr(ad, name, None)


def _chunks(items: Sequence, size: int):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class AdScreenshotService:
    """Owns the screenshot browser: lazy ``start``, single ``stop``."""

    def __init__(self, screenshot_dir: str | None = None, headless: bool | None = None):
        self.screenshot_dir = Path(screenshot_dir or finder_settings.screenshot_dir)
        self.headless = finder_settings.headless if headless is None else headless
        self._playwright = None
        self._browser: Browser | None = None
        self._lock = asyncio.Lock()

    # ── Lifecycle ──

    async def start(self) -> Browser:
        async with self._lock:
            if self._browser is None or not self._browser.is_connected():
                if self._playwright is None:
                    self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless,
                    args=[
                        "--no-sandbox",
                        "--disable-dev-shm-usage",
                        "--disable-gpu",
                        "--no-first-run",
                        "--disable-blink-features=AutomationControlled",
                        "--disable-extensions",
                    ],
                )
                logger.info("[screenshot] browser started (headless={})", self.headless)
            return self._browser

    async def stop(self):
        async with self._lock:
            if self._browser:
                await self._browser.close()
                self._browser = None
            if self._playwright:
                await self._playwright.stop()
                self._playwright = None
        logger.info("[screenshot] browser stopped")

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.stop()

    # ── Files ──

    def path_for(self, ad_id: str) -> Path:
        # ids come from upstream payloads; only the last path part is used
        name = Path(str(ad_id)).name
        if name in ("", ".", ".."):
            name = "ad"
        return self.screenshot_dir / f"{name}.png"

    def clear_screenshots(self) -> int:
        """Delete PNGs left by the previous search."""
        if not self.screenshot_dir.exists():
            return 0
        removed = 0
        for png in self.screenshot_dir.glob("*.png"):
            try:
                png.unlink()
                removed += 1
            except OSError as exc:
                logger.warning("[screenshot] could not delete {}: {}", png, exc)
        logger.info("[screenshot] cleared {} old screenshots", removed)
        return removed

    # ── Capture ──

    async def _capture_one(self, browser: Browser, ad_id: str, url: str) -> str:
        target = self.path_for(ad_id)
        if target.exists():
            return "exists"

        context = None
        try:
            context = await browser.new_context(
                viewport={"width": 1200, "height": 800},
                user_agent=USER_AGENT,
                extra_http_headers={"Accept-Language": "es-ES,es;q=0.9,en;q=0.8"},
            )
            page = await context.new_page()

            async def _block_heavy(route: Route):
                if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
                    await route.abort()
                else:
                    await route.continue_()

            await page.route("**/*", _block_heavy)
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=finder_settings.screenshot_timeout_ms,
            )
            await page.wait_for_timeout(SETTLE_MS)
            await page.screenshot(path=str(target), full_page=True)
            return "captured"
        except Exception as exc:
            logger.warning("[screenshot] ad {} failed: {}", ad_id, exc)
            return "failed"
        finally:
            if context is not None:
                await context.close()

    async def capture_batch(self, ads: Sequence[Any], batch_size: int | None = None) -> BatchReport:
        """Capture ``ad_snapshot_url`` for every ad, ``batch_size`` pages at a time."""
        batch_size = max(1, batch_size or finder_settings.screenshot_batch_size)
        targets = [
            (str(_field(ad, "id")), _field(ad, "ad_snapshot_url"))
            for ad in ads
            if _field(ad, "ad_snapshot_url")
        ]
        report = BatchReport()
        if not targets:
            return report

        self.screenshot_dir.mkdir(parents=True, exist_ok=True)
        browser = await self.start()
        batches = list(_chunks(targets, batch_size))
        logger.info("[screenshot] {} ads in {} batches of {}", len(targets), len(batches), batch_size)

        for index, batch in enumerate(batches, start=1):
            statuses = await asyncio.gather(
                *(self._capture_one(browser, ad_id, url) for ad_id, url in batch)
            )
            report.captured += statuses.count("captured")
            report.existing += statuses.count("exists")
            report.failed += statuses.count("failed")
            logger.info(
                "[screenshot] batch {}/{}: {} new, {} existing, {} failed",
                index, len(batches),
                statuses.count("captured"), statuses.count("exists"), statuses.count("failed"),
            )
            if index < len(batches):
                await asyncio.sleep(BATCH_PAUSE_SEC)

        return report
