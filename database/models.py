"""Ads Finder DB models. (SQLite/PostgreSQL compatible)"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


# ─────────────────────────────────────────────
# Saved "complete" searches (results reusable without re-scraping)
# ─────────────────────────────────────────────
class CompleteSearch(Base):
    __tablename__ = "complete_searches"

    id = Column(Integer, primary_key=True)
    search_name = Column(String(300), nullable=False, unique=True)
    search_params = Column(JSON)        # request as sent by the client
    source = Column(String(50), nullable=False)  # facebook_api / apify_scraping / ...
    total_results = Column(Integer, default=0)
    results = Column(JSON)              # NormalizedAd list
    search_metadata = Column(JSON)      # country, term, min days, ad type
    avg_hotness_score = Column(Float, default=0.0)
    long_running_ads = Column(Integer, default=0)
    top_pages = Column(JSON)            # up to 10 distinct page names
    executed_at = Column(DateTime, default=datetime.utcnow)
    last_accessed = Column(DateTime, default=datetime.utcnow)
    access_count = Column(Integer, default=1)

    __table_args__ = (
        Index("ix_complete_searches_source", "source"),
        Index("ix_complete_searches_executed", "executed_at"),
    )
