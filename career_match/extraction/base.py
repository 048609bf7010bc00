# career_match/extraction/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional

from bs4 import BeautifulSoup

from career_match.extraction.profiles import PatternProfile, ProfileRegistry
from career_match.models import Confidence


@dataclass(frozen=True)
class Anchor:
    href: str
    text: str


@dataclass(frozen=True)
class Candidate:
    """A raw hit from one matcher, before validation and canonicalization."""
    url: str
    pattern_id: str
    confidence: Confidence
    title: Optional[str] = None
    job_id: Optional[str] = None


@dataclass
class PageContext:
    """Everything a matcher may look at for one page."""
    source_url: str
    source_host: str
    soup: BeautifulSoup
    anchors: List[Anchor]
    profile: PatternProfile        # explicit, resolved for the source host, or generic
    explicit_profile: bool         # True when the profile was not the generic fallback
    registry: ProfileRegistry


class LinkMatcher(ABC):
    """
    One family of extraction heuristics. Matchers only propose candidates;
    rejection, canonicalization and dedup happen afterwards in the extractor.
    """

    family: str = ""

    @abstractmethod
    def find(self, ctx: PageContext) -> Iterable[Candidate]:
        raise NotImplementedError
