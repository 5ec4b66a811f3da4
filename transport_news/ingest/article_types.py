"""Article data structures shared by the scrape, dedup and ranking stages."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from ..utils import utc_now

SegmentTag = Literal["pro", "driver", "both"]
Segment = Literal["pro", "driver"]
SEGMENTS: tuple[Segment, ...] = ("pro", "driver")


@dataclass(frozen=True)
class RawCandidate:
    """Unvalidated title/url/summary triple pulled from a page."""
    title: str
    url: str | None
    summary: str
    source: str
    category: str
    priority: int
    published_at: datetime | None = None

    @property
    def content(self) -> str:
        return f"{self.title} {self.summary}"


class Article(BaseModel):
    """Validated article, the unit stored in the archive."""
    model_config = ConfigDict(validate_assignment=True)

    id: str | None = None
    title: str
    url: str
    summary: str = ""
    source: str
    category: str = "industry"
    source_priority: int = 5
    relevance_score: int = Field(0, ge=0, le=20)
    content_hash: str
    content_category: str | None = None
    category_priority: int | None = None
    composite_score: float | None = None
    segment_tag: str | None = None
    published_at: datetime | None = None
    collected_at: datetime = Field(default_factory=utc_now)
    used_in_issue: str | None = None

    @property
    def content(self) -> str:
        return f"{self.title} {self.summary}"

    @property
    def is_used(self) -> bool:
        return bool(self.used_in_issue)


class RejectionReason(str, Enum):
    """Why a candidate failed validation."""
    MISSING_FIELD = "missing_field"
    TITLE_LENGTH = "title_length"
    DOMAIN_NOT_ALLOWED = "domain_not_allowed"
    EXCLUDED_PATTERN = "excluded_pattern"
    LOW_RELEVANCE = "low_relevance"


@dataclass(frozen=True)
class Rejection:
    """Validation failure, returned as a value rather than raised."""
    reason: RejectionReason
    detail: str
    candidate: RawCandidate | None = None
    score: int | None = None


@dataclass(frozen=True)
class DuplicateMatch:
    """Record of an article dropped as a duplicate of an earlier one."""
    kept: Article | None
    dropped: Article
    method: str
    similarity: float = 1.0


class RewrittenArticle(BaseModel):
    """Newsletter-ready article returned by the rewriting stage."""
    id: str | None = None
    title: str
    summary: str
    tip: str = ""
    url: str
    source: str
    category: str
