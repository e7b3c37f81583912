"""Pydantic schemas -- API request/response serialization.

The web client speaks camelCase (``searchType``, ``minDays``, ``totalAds``);
field names stay snake_case and are aliased.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from processor.normalizer import NormalizedAd

_LEADING_INT = re.compile(r"\s*([-+]?\d+)")


def _leading_int(value) -> int | None:
    """Integer prefix of a form value: ``"10 días"`` is 10, ``"5.5"`` is 5."""
    if value is None or isinstance(value, bool):
        return None
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Search ──
class SearchRequest(_CamelModel):
    search_type: str = Field(default="keyword", description="keyword | page")
    value: str = ""
    country: str | None = None
    min_days: int = Field(default=0, description="Minimum days running")
    url: str | None = Field(default=None, description="Direct Graph API URL")
    date_from: str | None = None
    date_to: str | None = None
    ad_type: str | None = None
    media_type: str | None = None
    languages: list[str] | None = None
    platforms: list[str] | None = None
    search_phrase_type: str | None = Field(default=None, description="exact | unordered")
    single_page: bool = False
    use_web_scraping: bool = False
    use_apify: bool = False
    apify_count: int | None = None
    auto_save_complete: bool = False
    complete_name: str | None = None

    @field_validator("min_days", mode="before")
    @classmethod
    def lenient_min_days(cls, v):
        # Client sends form strings; anything unparseable means no minimum
        return max(0, _leading_int(v) or 0)

    @field_validator("apify_count", mode="before")
    @classmethod
    def lenient_count(cls, v):
        return max(0, _leading_int(v) or 0) or None

    @property
    def is_keyword_search(self) -> bool:
        return self.search_type == "keyword" and not self.url


class AutoSaveInfo(_CamelModel):
    saved: bool
    scheduled: bool = False
    search_name: str | None = None
    message: str


class SearchResponse(_CamelModel):
    data: list[NormalizedAd] = Field(default_factory=list)
    total_pages: int = 0
    total_ads: int = 0
    paging: dict | None = None
    source: str
    message: str | None = None
    facebook_library_url: str | None = None
    auto_saved: AutoSaveInfo | None = None
