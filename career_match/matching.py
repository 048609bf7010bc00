# career_match/matching.py
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from career_match.models import CandidateProfile, JobPosting, MatchResult
from career_match.scoring import candidate_rank_key, rank_key, score

logger = logging.getLogger(__name__)


def _job_quality(j: JobPosting) -> Tuple[int, float, str]:
    """
    Higher is better:
    1) more listed skills
    2) discovered more recently
    3) has a title
    """
    return (len(j.skills), j.discovered_at.timestamp(), j.title or "")


def dedupe_jobs(jobs: Iterable[JobPosting]) -> List[JobPosting]:
    """
    Deduplicate by job id and keep the best-quality record.
    """
    best_by_id: Dict[str, JobPosting] = {}
    for j in jobs:
        prev = best_by_id.get(j.id)
        if prev is None or _job_quality(j) > _job_quality(prev):
            best_by_id[j.id] = j
    return list(best_by_id.values())


def apply_filters(
    results: List[MatchResult],
    *,
    min_score: float = 0.0,
    top_n: Optional[int] = None,
) -> List[MatchResult]:
    """Results must already be ranked; filtering keeps their order."""
    out = [r for r in results if r.score >= min_score]
    if top_n is not None:
        out = out[: max(0, top_n)]
    return out


def rank_jobs_for_candidate(
    candidate: CandidateProfile,
    jobs: Iterable[JobPosting],
    *,
    weights: Optional[Mapping[str, float]] = None,
    frequency_table: Optional[Mapping[str, int]] = None,
    min_score: float = 0.0,
    top_n: Optional[int] = None,
) -> List[MatchResult]:
    """
    Score every job against one candidate, best first. Skill sets must
    already be normalized.
    """
    jobs = list(jobs)
    before = len(jobs)
    unique = dedupe_jobs(jobs)
    if len(unique) != before:
        logger.debug("Deduped jobs: %d -> %d", before, len(unique))

    results = [
        score(
            j.skills,
            candidate.skills,
            weights,
            frequency_table=frequency_table,
            job_id=j.id,
            candidate_id=candidate.user_id,
        )
        for j in unique
    ]
    results.sort(key=rank_key)
    return apply_filters(results, min_score=min_score, top_n=top_n)


def rank_candidates_for_job(
    job: JobPosting,
    candidates: Iterable[CandidateProfile],
    *,
    weights: Optional[Mapping[str, float]] = None,
    frequency_table: Optional[Mapping[str, int]] = None,
    min_score: float = 0.0,
    top_n: Optional[int] = None,
) -> List[MatchResult]:
    """Same as rank_jobs_for_candidate, the other way round; ties go to the smaller candidate id."""
    results = [
        score(
            job.skills,
            c.skills,
            weights,
            frequency_table=frequency_table,
            job_id=job.id,
            candidate_id=c.user_id,
        )
        for c in candidates
    ]
    results.sort(key=candidate_rank_key)
    return apply_filters(results, min_score=min_score, top_n=top_n)
