# career_match/extraction/extractor.py
"""
Career page -> set of specific job-posting URLs.

All matcher families run over the page; their candidates are then validated,
canonicalized and deduplicated. Nothing here raises for an unhelpful page:
zero or low-confidence-only results are reported through a ReasonCode.
"""
from __future__ import annotations

import logging
import re
from collections import Counter
from typing import FrozenSet, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlsplit

from bs4 import BeautifulSoup

from career_match.extraction.base import Anchor, Candidate, LinkMatcher, PageContext
from career_match.extraction.matchers import (
    DEFAULT_MATCHERS,
    is_identifier_like,
    is_job_segment,
    is_non_job_segment,
)
from career_match.extraction.profiles import PatternProfile, ProfileRegistry, job_id_params
from career_match.models import (
    Confidence,
    ExtractedLink,
    ExtractionReport,
    RawPage,
    ReasonCode,
    merge_links,
)
from career_match.utils import (
    SUPPORTED_SCHEMES,
    canonicalize_url,
    collapse_ws,
    domain_matches,
    host_of,
    path_segments,
    query_keys,
    registrable_domain,
    resolve_url,
)

logger = logging.getLogger(__name__)


DEFAULT_CLIENT_RENDERED_THRESHOLD = 50_000

# Rejection reasons, as counted in ExtractionReport.rejected.
UNSUPPORTED_SCHEME = "unsupported_scheme"
FOREIGN_DOMAIN = "foreign_domain"
NON_JOB_KEYWORD = "non_job_keyword"
PAGINATION = "pagination"
CATEGORY_ROOT = "category_root"
SELF_LINK = "self_link"

PAGINATION_PARAMS = frozenset({
    "page", "pg", "offset", "start", "from", "sort", "order",
    "q", "query", "keyword", "keywords", "search", "filter", "category", "department", "location",
})

_JOB_TEXT_RE = re.compile(
    r"\b(?:jobs?|careers?|positions?|openings?|vacanc(?:y|ies)|hiring|apply|requisitions?)\b",
    re.IGNORECASE,
)
_UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)
_LEADING_DIGITS_RE = re.compile(r"^(\d{3,})(?:[-_].*)?$")
_TRAILING_ID_RE = re.compile(r"[-_]([a-z]*\d[a-z0-9]{3,})$", re.IGNORECASE)
_NON_VISIBLE_TAGS = ("script", "style", "noscript", "template")


def _collect_anchors(soup: BeautifulSoup) -> List[Anchor]:
    anchors: List[Anchor] = []
    for el in soup.find_all(["a", "area"], href=True):
        href = el.get("href")
        if not isinstance(href, str) or not href.strip():
            continue
        text = el.get_text(" ", strip=True) or el.get("title") or el.get("aria-label") or ""
        anchors.append(Anchor(href=href.strip(), text=collapse_ws(text)))
    return anchors


def _has_job_text(soup: BeautifulSoup) -> bool:
    for tag in soup.find_all(_NON_VISIBLE_TAGS):
        tag.decompose()
    return bool(_JOB_TEXT_RE.search(soup.get_text(" ", strip=True)))


def job_id_from_url(url: str, id_params: Sequence[str]) -> Optional[str]:
    """Best-effort posting id: an id query param, a UUID, or an id-looking path segment."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    wanted = {p.lower() for p in id_params}
    params = sorted((k.lower(), v) for k, v in parse_qsl(parts.query) if k.lower() in wanted and v)
    if params:
        return params[0][1]

    m = _UUID_RE.search(parts.path)
    if m:
        return m.group(0).lower()

    for seg in reversed(path_segments(parts.path)):
        if seg.isdigit() and len(seg) >= 3:
            return seg
        m = _LEADING_DIGITS_RE.match(seg) or _TRAILING_ID_RE.search(seg)
        if m:
            return m.group(1)
    return None


class UrlExtractor:
    """
    Stateless apart from its configuration; one instance can serve many
    pages concurrently.
    """

    def __init__(
        self,
        registry: Optional[ProfileRegistry] = None,
        client_rendered_threshold: int = DEFAULT_CLIENT_RENDERED_THRESHOLD,
        matchers: Optional[Iterable[LinkMatcher]] = None,
    ):
        self.registry = registry or ProfileRegistry()
        self.client_rendered_threshold = client_rendered_threshold
        self.matchers: List[LinkMatcher] = list(matchers) if matchers is not None else list(DEFAULT_MATCHERS)

    def extract(self, page: RawPage, site_profile: Optional[PatternProfile] = None) -> ExtractionReport:
        source_url = page.source_url
        source_host = host_of(source_url)
        markup = page.html if isinstance(page.html, (bytes, str)) else bytes(page.html)
        soup = BeautifulSoup(markup, "html.parser")

        if site_profile is not None:
            profile, explicit = site_profile, True
        else:
            resolved = self.registry.resolve(source_host)
            profile, explicit = (resolved, True) if resolved is not None else (self.registry.profile_for(source_host), False)

        ctx = PageContext(
            source_url=source_url,
            source_host=source_host,
            soup=soup,
            anchors=_collect_anchors(soup),
            profile=profile,
            explicit_profile=explicit,
            registry=self.registry,
        )

        candidates: List[Candidate] = []
        for matcher in self.matchers:
            candidates.extend(matcher.find(ctx))

        rejected: Counter = Counter()
        accepted: List[ExtractedLink] = []
        for cand in candidates:
            link, reason = self._validate(cand, ctx)
            if link is None:
                rejected[reason] += 1
                logger.debug("Rejected %s from %s (%s, %s)", cand.url, source_url, cand.pattern_id, reason)
                continue
            accepted.append(link)

        links = merge_links(accepted)
        reason = self._reason(links, soup, len(markup))
        if reason is not None:
            logger.debug("Page %s: %d links, reason=%s", source_url, len(links), reason.value)

        return ExtractionReport(
            source_url=source_url,
            links=links,
            reason=reason,
            rejected=dict(sorted(rejected.items())),
        )

    def extract_links(self, page: RawPage, site_profile: Optional[PatternProfile] = None) -> FrozenSet[ExtractedLink]:
        return self.extract(page, site_profile).links

    def _validate(self, cand: Candidate, ctx: PageContext) -> Tuple[Optional[ExtractedLink], str]:
        href = cand.url.strip()
        if not href or href.startswith("#"):
            return None, UNSUPPORTED_SCHEME

        absolute = resolve_url(href, ctx.source_url)
        if absolute is None:
            return None, UNSUPPORTED_SCHEME
        try:
            scheme = urlsplit(absolute).scheme.lower()
        except ValueError:
            return None, UNSUPPORTED_SCHEME
        if scheme not in SUPPORTED_SCHEMES:
            return None, UNSUPPORTED_SCHEME

        link_host = host_of(absolute)
        link_profile = self.registry.resolve(link_host)
        params = job_id_params(ctx.profile, link_profile)
        canonical = canonicalize_url(absolute, keep_params=params)
        if canonical is None:
            return None, UNSUPPORTED_SCHEME

        if not self._allowed_host(link_host, ctx):
            return None, FOREIGN_DOMAIN

        path = urlsplit(canonical).path
        segs = path_segments(path)
        if any(is_non_job_segment(s) for s in segs):
            return None, NON_JOB_KEYWORD
        if ctx.profile.is_excluded(path) or (link_profile is not None and link_profile.is_excluded(path)):
            return None, NON_JOB_KEYWORD

        # Tracking or filter params on a posting path ("?from=homepage") are
        # dropped by canonicalization; only listing pages are rejected.
        keys = set(query_keys(absolute))
        if keys & PAGINATION_PARAMS and not keys & set(params) and not any(is_identifier_like(s) for s in segs):
            return None, PAGINATION

        if not urlsplit(canonical).query and (not segs or is_job_segment(segs[-1])):
            return None, CATEGORY_ROOT

        if canonical == canonicalize_url(ctx.source_url, keep_params=params):
            return None, SELF_LINK

        return (
            ExtractedLink(
                candidate_url=canonical,
                matched_pattern=cand.pattern_id,
                confidence=cand.confidence,
                title=cand.title,
                job_id=cand.job_id or job_id_from_url(canonical, params),
            ),
            "",
        )

    def _allowed_host(self, link_host: str, ctx: PageContext) -> bool:
        if not link_host:
            return False
        if registrable_domain(link_host) == registrable_domain(ctx.source_host):
            return True
        if ctx.explicit_profile and any(domain_matches(link_host, d) for d in ctx.profile.domains):
            return True
        return self.registry.is_partner(link_host, extra=ctx.profile.partner_domains)

    def _reason(self, links: FrozenSet[ExtractedLink], soup: BeautifulSoup, size: int) -> Optional[ReasonCode]:
        if not links:
            if size < self.client_rendered_threshold and not _has_job_text(soup):
                return ReasonCode.LIKELY_CLIENT_RENDERED
            return ReasonCode.NO_MATCHES
        if all(link.confidence == Confidence.LOW for link in links):
            return ReasonCode.LOW_CONFIDENCE_ONLY
        return None


_default_extractor: Optional[UrlExtractor] = None


def _default() -> UrlExtractor:
    global _default_extractor
    if _default_extractor is None:
        _default_extractor = UrlExtractor()
    return _default_extractor


def extract(page: RawPage, site_profile: Optional[PatternProfile] = None) -> ExtractionReport:
    return _default().extract(page, site_profile)


def extract_links(page: RawPage, site_profile: Optional[PatternProfile] = None) -> FrozenSet[ExtractedLink]:
    return _default().extract_links(page, site_profile)
