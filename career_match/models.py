from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]


_CONFIDENCE_RANK = {Confidence.LOW: 0, Confidence.MEDIUM: 1, Confidence.HIGH: 2}


class ReasonCode(str, Enum):
    NO_MATCHES = "no_matches"
    LIKELY_CLIENT_RENDERED = "likely_client_rendered"
    LOW_CONFIDENCE_ONLY = "low_confidence_only"


class PageState(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    FETCHED = "fetched"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    FAILED = "failed"


class MatchState(str, Enum):
    PENDING = "pending"
    NORMALIZING = "normalizing"
    SCORING = "scoring"
    SCORED = "scored"
    FAILED = "failed"


@dataclass(frozen=True)
class RawPage:
    """Raw markup of one career page, as handed over by a fetcher."""
    source_url: str
    html: bytes
    fetched_at: datetime = field(default_factory=utc_now)
    status_code: Optional[int] = None


@dataclass(frozen=True)
class ExtractedLink:
    """
    A specific job-posting URL found on a career page.
    candidate_url is absolute and canonical; it is the dedup key.
    """
    candidate_url: str
    matched_pattern: str         # e.g. "site:netflix:0", "generic:job-path", "attribute:data-job-id"
    confidence: Confidence
    title: Optional[str] = None  # anchor text, when there is any
    job_id: Optional[str] = None


@dataclass(frozen=True)
class ExtractionReport:
    source_url: str
    links: FrozenSet[ExtractedLink]
    reason: Optional[ReasonCode] = None
    rejected: Dict[str, int] = field(default_factory=dict)

    @property
    def ambiguous(self) -> bool:
        return self.reason is not None


class JobPosting(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    company: str = ""
    skills: FrozenSet[str] = frozenset()
    source_page_url: Optional[str] = None
    discovered_at: datetime = Field(default_factory=utc_now)

    def with_skills(self, skills: FrozenSet[str]) -> "JobPosting":
        """Skill refresh is the one permitted change after discovery."""
        return self.model_copy(update={"skills": frozenset(skills)})


class CandidateProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    skills: FrozenSet[str] = frozenset()


class MatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_id: str
    candidate_id: str
    score: float = Field(ge=0.0, le=1.0)
    matched_skills: FrozenSet[str]
    unmatched_required: FrozenSet[str]
    flagged: bool = False
    flag_reason: Optional[str] = None


@dataclass
class PageOutcome:
    source_url: str
    state: PageState = PageState.PENDING
    attempts: int = 0
    report: Optional[ExtractionReport] = None
    error: Optional[str] = None
    retryable: bool = False
    failure_reason: Optional[str] = None  # "fetch", "timeout", "extraction_error", "cancelled", "persist_error"


@dataclass
class MatchOutcome:
    job_id: str
    candidate_id: str
    state: MatchState = MatchState.PENDING
    result: Optional[MatchResult] = None
    error: Optional[str] = None


@dataclass
class BatchSummary:
    """
    Counts are mutually exclusive: an extracted page is either succeeded or
    ambiguous (it carries a reason code); cancelled pages were never dispatched.
    """
    succeeded: int = 0
    failed: int = 0
    ambiguous: int = 0
    cancelled: int = 0
    outcomes: List[PageOutcome] = field(default_factory=list)

    @property
    def links(self) -> FrozenSet[ExtractedLink]:
        found: List[ExtractedLink] = []
        for o in self.outcomes:
            if o.report is not None and o.state == PageState.EXTRACTED:
                found.extend(o.report.links)
        return merge_links(found)


def _link_preference(link: ExtractedLink):
    return (-link.confidence.rank, link.matched_pattern, link.title or "", link.job_id or "")


def merge_links(links) -> FrozenSet[ExtractedLink]:
    """
    Collapse links sharing a canonical URL, keeping the highest confidence.
    Ties go to the smallest pattern id, so the result does not depend on
    the order links were found in.
    """
    best: Dict[str, ExtractedLink] = {}
    titles: Dict[str, str] = {}
    for link in links:
        url = link.candidate_url
        prev = best.get(url)
        if prev is None or _link_preference(link) < _link_preference(prev):
            best[url] = link
        if link.title and (url not in titles or link.title < titles[url]):
            titles[url] = link.title

    out = set()
    for url, link in best.items():
        if not link.title and url in titles:
            link = replace(link, title=titles[url])
        out.add(link)
    return frozenset(out)


@dataclass
class MatchBatch:
    results: List[MatchResult] = field(default_factory=list)
    failures: List[MatchOutcome] = field(default_factory=list)
    malformed_skills: int = 0
