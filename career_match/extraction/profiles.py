# career_match/extraction/profiles.py
"""
Pattern registry for link extraction.

A PatternProfile describes how one site (or ATS) lays out its job URLs. Rules
are a tagged union on `kind`, so profiles can live in YAML next to the rest
of the pipeline configuration and supporting a new site is a config change.
"""
from __future__ import annotations

import functools
import re
from typing import Annotated, Dict, Iterable, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field, field_validator

from career_match.models import Confidence
from career_match.utils import domain_matches


DEFAULT_JOB_ID_ATTRIBUTES = (
    "data-job-id",
    "data-jobid",
    "data-job",
    "data-posting-id",
    "data-requisition-id",
    "data-req-id",
)

# Query parameters that identify a single posting; everything else is dropped.
DEFAULT_JOB_ID_PARAMS = (
    "gh_jid",
    "jobid",
    "job_id",
    "jid",
    "id",
    "req",
    "reqid",
    "req_id",
    "requisition_id",
    "requisitionid",
    "posting_id",
    "pid",
)

PARTNER_ATS_DOMAINS = (
    "greenhouse.io",
    "lever.co",
    "ashbyhq.com",
    "myworkdayjobs.com",
    "bamboohr.com",
    "jobvite.com",
    "smartrecruiters.com",
    "icims.com",
    "workable.com",
    "recruitee.com",
    "breezy.hr",
    "taleo.net",
    "successfactors.com",
    "teamtailor.com",
)

_UUID = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"


@functools.lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> "re.Pattern[str]":
    return re.compile(pattern, re.IGNORECASE)


class PathRule(BaseModel):
    kind: Literal["path"] = "path"
    pattern: str  # regex searched against the canonical URL path
    confidence: Confidence = Confidence.HIGH

    @field_validator("pattern")
    @classmethod
    def _must_compile(cls, v: str) -> str:
        try:
            compile_pattern(v)
        except re.error as e:
            raise ValueError(f"invalid path pattern {v!r}: {e}") from e
        return v

    def matches(self, path: str) -> bool:
        return bool(compile_pattern(self.pattern).search(path or "/"))


class AttributeRule(BaseModel):
    kind: Literal["attribute"] = "attribute"
    attribute: str
    # Used when the element has no link of its own, e.g. "/careers/{job_id}".
    url_template: Optional[str] = None
    confidence: Confidence = Confidence.HIGH

    @field_validator("attribute")
    @classmethod
    def _lower(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("attribute name must not be empty")
        return v

    @field_validator("url_template")
    @classmethod
    def _has_placeholder(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and "{job_id}" not in v:
            raise ValueError("url_template must contain {job_id}")
        return v


Rule = Annotated[Union[PathRule, AttributeRule], Field(discriminator="kind")]


class PatternProfile(BaseModel):
    name: str
    domains: List[str] = Field(default_factory=list)
    rules: List[Rule] = Field(default_factory=list)
    exclude: List[str] = Field(default_factory=list)  # substrings that disqualify a URL path
    job_id_params: List[str] = Field(default_factory=list)
    partner_domains: List[str] = Field(default_factory=list)

    @property
    def path_rules(self) -> List[PathRule]:
        return [r for r in self.rules if isinstance(r, PathRule)]

    @property
    def attribute_rules(self) -> List[AttributeRule]:
        return [r for r in self.rules if isinstance(r, AttributeRule)]

    def applies_to(self, host: str) -> bool:
        return any(domain_matches(host, d) for d in self.domains)

    def is_excluded(self, path: str) -> bool:
        p = (path or "").lower()
        return any(x.lower() in p for x in self.exclude if x)


GENERIC_PROFILE = PatternProfile(
    name="generic",
    rules=[AttributeRule(attribute=a, confidence=Confidence.HIGH) for a in DEFAULT_JOB_ID_ATTRIBUTES],
)


BUILTIN_PROFILES: List[PatternProfile] = [
    PatternProfile(
        name="netflix",
        domains=["explore.jobs.netflix.net", "jobs.netflix.com"],
        rules=[PathRule(pattern=r"^/careers/job/\d+"), PathRule(pattern=r"^/jobs/\d+$")],
        exclude=["expression-of-interest"],
    ),
    PatternProfile(
        name="bankofamerica",
        domains=["careers.bankofamerica.com"],
        rules=[PathRule(pattern=r"/job-detail/[^/]+")],
        exclude=["/benefits", "/career-development", "/company", "/discover-your-career", "/errors"],
    ),
    PatternProfile(
        name="google",
        domains=["careers.google.com", "google.com"],
        rules=[PathRule(pattern=r"/jobs/results/\d+")],
    ),
    PatternProfile(
        name="capitalone",
        domains=["capitalonecareers.com"],
        rules=[PathRule(pattern=r"^/job/[^/]+/[^/]+/\d+/\d+$")],
        exclude=["-blog-", "-article-", "/a-day-in-"],
    ),
    PatternProfile(
        name="shopify",
        domains=["shopify.com"],
        rules=[
            PathRule(pattern=r"^/careers/(?!search|department)[^/]+_[0-9a-f-]{8,}$"),
            AttributeRule(attribute="data-job-id", url_template="/careers/{job_id}"),
        ],
    ),
    PatternProfile(
        name="stripe",
        domains=["stripe.com"],
        rules=[PathRule(pattern=r"^/jobs/listing/[^/]+/\d+$")],
    ),
    PatternProfile(
        name="airbnb",
        domains=["careers.airbnb.com"],
        rules=[PathRule(pattern=r"^/positions/\d+$")],
    ),
    PatternProfile(
        name="uber",
        domains=["uber.com"],
        rules=[PathRule(pattern=r"/careers/list/\d+$")],
    ),
    PatternProfile(
        name="spotify",
        domains=["lifeatspotify.com", "spotifyjobs.com"],
        rules=[PathRule(pattern=r"^/jobs/[a-z0-9-]+$")],
    ),
    # Hosted ATS boards a company page may link out to.
    PatternProfile(
        name="greenhouse",
        domains=["boards.greenhouse.io", "job-boards.greenhouse.io"],
        rules=[PathRule(pattern=r"^/[^/]+/jobs/\d+$")],
    ),
    PatternProfile(
        name="lever",
        domains=["jobs.lever.co"],
        rules=[PathRule(pattern=rf"^/[^/]+/{_UUID}$")],
    ),
    PatternProfile(
        name="ashby",
        domains=["jobs.ashbyhq.com"],
        rules=[PathRule(pattern=rf"^/[^/]+/{_UUID}$")],
    ),
    PatternProfile(
        name="workday",
        domains=["myworkdayjobs.com"],
        rules=[PathRule(pattern=r"/job/[^/]+/[^/]+_[a-z0-9-]+$")],
    ),
]


class ProfileRegistry:
    """
    Resolves the PatternProfile for a host. Configured profiles win over the
    built-in ones; among candidates the most specific domain wins.
    """

    def __init__(
        self,
        site_profiles: Optional[Mapping[str, PatternProfile]] = None,
        *,
        include_builtin: bool = True,
        partner_domains: Iterable[str] = (),
    ):
        self._configured: List[PatternProfile] = []
        for domain, profile in (site_profiles or {}).items():
            domain = domain.strip().lower()
            if domain and domain not in profile.domains:
                profile = profile.model_copy(update={"domains": [*profile.domains, domain]})
            self._configured.append(profile)

        self._builtin: List[PatternProfile] = list(BUILTIN_PROFILES) if include_builtin else []

        partners = {d.strip().lower() for d in PARTNER_ATS_DOMAINS}
        partners.update(d.strip().lower() for d in partner_domains if d and d.strip())
        for p in self._configured:
            partners.update(d.lower() for d in p.partner_domains)
        self._partners = frozenset(partners)

    @property
    def profiles(self) -> List[PatternProfile]:
        return [*self._configured, *self._builtin]

    def resolve(self, host: str) -> Optional[PatternProfile]:
        best: Optional[PatternProfile] = None
        best_len = -1
        for group in (self._configured, self._builtin):
            for profile in group:
                for d in profile.domains:
                    if domain_matches(host, d) and len(d) > best_len:
                        best, best_len = profile, len(d)
            if best is not None:
                return best
        return None

    def profile_for(self, host: str) -> PatternProfile:
        return self.resolve(host) or GENERIC_PROFILE

    def is_partner(self, host: str, extra: Iterable[str] = ()) -> bool:
        return any(domain_matches(host, d) for d in (*self._partners, *extra))


def job_id_params(*profiles: Optional[PatternProfile]) -> List[str]:
    params: Dict[str, None] = dict.fromkeys(DEFAULT_JOB_ID_PARAMS)
    for p in profiles:
        if p is not None:
            params.update(dict.fromkeys(x.lower() for x in p.job_id_params))
    return list(params)
