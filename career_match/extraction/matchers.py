# career_match/extraction/matchers.py
"""
The matcher battery. Each family proposes candidate job URLs from a parsed
career page with a confidence tag:

1. SitePathMatcher    - path rules from the site's PatternProfile   (HIGH)
2. GenericPathMatcher - job-indicative path segment + sub-path      (MEDIUM / LOW)
3. AttributeMatcher   - markup attributes carrying a job id         (HIGH)
"""
from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional
from urllib.parse import quote, urlsplit

from bs4 import Tag

from career_match.extraction.base import Candidate, LinkMatcher, PageContext
from career_match.extraction.profiles import GENERIC_PROFILE, AttributeRule, PatternProfile, job_id_params
from career_match.models import Confidence
from career_match.utils import collapse_ws, host_of, path_segments, query_keys, registrable_domain, resolve_url

logger = logging.getLogger(__name__)


JOB_SEGMENT_RE = re.compile(
    r"^(?:jobs?|careers?|positions?|openings?|vacanc(?:y|ies)|job[-_]?details?|"
    r"job[-_]?postings?|postings?|requisitions?|opportunit(?:y|ies)|career[-_]opportunities)$"
)

NON_JOB_SEGMENTS = frozenset({
    "about", "about-us", "faq", "faqs", "benefits", "perks", "life", "culture", "values",
    "search", "teams", "team", "departments", "department", "locations", "location",
    "category", "categories", "page", "blog", "news", "press", "events", "stories",
    "students", "university", "early-careers", "diversity", "inclusion", "how-we-hire",
    "hiring-process", "interview-process", "saved", "saved-jobs", "alerts", "job-alerts",
    "login", "signin", "sign-in", "register", "privacy", "cookies", "terms", "contact",
    "all", "browse", "filter", "sitemap", "talent-community", "join-talent-community",
})

NON_JOB_PREFIXES = ("life-at-", "working-at-", "why-", "meet-", "our-", "inside-")

_UUID_RE = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}")
_DIGITS_RE = re.compile(r"\d{3,}")
_SLUG_RE = re.compile(r"^[a-z0-9]+(?:[-_][a-z0-9]+)+$")
_JOB_ID_VALUE_RE = re.compile(r"^[\w.:-]{1,128}$")
_JOB_HOST_RE = re.compile(r"^(?:jobs?|careers?)[.-]")
_TITLE_LIMIT = 300


def is_job_segment(segment: str) -> bool:
    return bool(JOB_SEGMENT_RE.match(segment))


def is_non_job_segment(segment: str) -> bool:
    return segment in NON_JOB_SEGMENTS or segment.startswith(NON_JOB_PREFIXES)


def is_identifier_like(segment: str) -> bool:
    """Digits, a UUID, or a long hyphenated slug ("senior-backend-engineer")."""
    if _DIGITS_RE.search(segment) or _UUID_RE.search(segment):
        return True
    return len(segment) >= 8 and bool(_SLUG_RE.match(segment))


def _title(text: Optional[str]) -> Optional[str]:
    t = collapse_ws(text or "")
    return t[:_TITLE_LIMIT] if t else None


def _path_of(url: str) -> str:
    try:
        path = urlsplit(url).path or "/"
    except ValueError:
        return ""
    path = re.sub(r"/{2,}", "/", path)
    return path.rstrip("/") or "/"


class SitePathMatcher(LinkMatcher):
    """
    Applies PathRules of the page's own profile to links on the same site,
    and the rules of known ATS profiles to links pointing at those boards.
    """

    family = "site"

    def _profiles_for(self, ctx: PageContext, link_host: str) -> List[PatternProfile]:
        profiles: List[PatternProfile] = []
        same_site = (
            ctx.profile.applies_to(link_host)
            or registrable_domain(link_host) == registrable_domain(ctx.source_host)
        )
        if ctx.explicit_profile and same_site:
            profiles.append(ctx.profile)
        other = ctx.registry.resolve(link_host)
        if other is not None and other is not ctx.profile:
            profiles.append(other)
        return profiles

    def find(self, ctx: PageContext) -> Iterable[Candidate]:
        for anchor in ctx.anchors:
            absolute = resolve_url(anchor.href, ctx.source_url)
            link_host = host_of(absolute) if absolute else ""
            if not link_host:
                continue
            path = _path_of(absolute)
            for profile in self._profiles_for(ctx, link_host):
                for i, rule in enumerate(profile.path_rules):
                    if rule.matches(path):
                        yield Candidate(
                            url=absolute,
                            pattern_id=f"site:{profile.name}:{i}",
                            confidence=rule.confidence,
                            title=_title(anchor.text),
                        )
                        break


class GenericPathMatcher(LinkMatcher):
    family = "generic"

    def find(self, ctx: PageContext) -> Iterable[Candidate]:
        for anchor in ctx.anchors:
            absolute = resolve_url(anchor.href, ctx.source_url)
            if absolute is None:
                continue
            segs = path_segments(_path_of(absolute))
            has_id = bool(set(query_keys(absolute)) & set(job_id_params(ctx.profile)))
            confidence = self.classify(host_of(absolute), segs, has_id)
            if confidence is None:
                continue
            pattern = "generic:job-path" if any(is_job_segment(s) for s in segs) else "generic:job-host"
            yield Candidate(
                url=absolute,
                pattern_id=pattern,
                confidence=confidence,
                title=_title(anchor.text),
            )

    @staticmethod
    def classify(host: str, segs: List[str], has_id_param: bool = False) -> Optional[Confidence]:
        """
        Anything under a job-indicative segment is proposed; bare roots and
        marketing sub-paths are proposed at LOW so validation can count
        them as rejected.
        """
        for i, seg in enumerate(segs):
            if not is_job_segment(seg):
                continue
            rest = segs[i + 1:]
            if not rest and has_id_param:
                return Confidence.MEDIUM
            if rest and not is_non_job_segment(rest[0]) and any(is_identifier_like(s) for s in rest):
                return Confidence.MEDIUM
            return Confidence.LOW

        if _JOB_HOST_RE.match(host) and segs and any(is_identifier_like(s) for s in segs):
            return Confidence.LOW
        return None


class AttributeMatcher(LinkMatcher):
    """
    Elements that carry a job id in an attribute. The link is the element's
    own href, else an enclosing or contained anchor, else the rule's
    url_template; elements with none of these are skipped.
    """

    family = "attribute"

    def _rules(self, ctx: PageContext) -> List[AttributeRule]:
        by_attr = {r.attribute: r for r in GENERIC_PROFILE.attribute_rules}
        # Site rules override the generic ones attribute by attribute.
        by_attr.update({r.attribute: r for r in ctx.profile.attribute_rules})
        return [by_attr[a] for a in sorted(by_attr)]

    def find(self, ctx: PageContext) -> Iterable[Candidate]:
        for rule in self._rules(ctx):
            for el in ctx.soup.find_all(attrs={rule.attribute: True}):
                raw_id = el.get(rule.attribute)
                if isinstance(raw_id, list):
                    raw_id = " ".join(raw_id)
                job_id = (raw_id or "").strip()
                if not _JOB_ID_VALUE_RE.match(job_id):
                    continue

                href = self._href_for(el)
                if href is None and rule.url_template:
                    href = rule.url_template.format(job_id=quote(job_id, safe=""))
                if href is None:
                    logger.debug("No link for %s=%s on %s", rule.attribute, job_id, ctx.source_url)
                    continue

                url = resolve_url(href, ctx.source_url)
                if url is None:
                    continue
                yield Candidate(
                    url=url,
                    pattern_id=f"attribute:{rule.attribute}",
                    confidence=rule.confidence,
                    title=_title(self._title_for(el)),
                    job_id=job_id,
                )

    @staticmethod
    def _href_for(el: Tag) -> Optional[str]:
        own = el.get("href")
        if isinstance(own, str) and own.strip() and not own.strip().startswith("#"):
            return own.strip()
        parent = el.find_parent("a", href=True)
        if parent is not None:
            return parent["href"].strip()
        child = el.find("a", href=True)
        if child is not None:
            return child["href"].strip()
        return None

    @staticmethod
    def _title_for(el: Tag) -> str:
        heading = el.find(re.compile(r"^h[1-6]$"))
        if heading is not None:
            return heading.get_text(" ", strip=True)
        return el.get_text(" ", strip=True)


DEFAULT_MATCHERS: List[LinkMatcher] = [SitePathMatcher(), GenericPathMatcher(), AttributeMatcher()]
