# career_match/scoring.py
"""
Skill-overlap scoring.

    score = sum(w(s) for s in job & candidate) / sum(w(s) for s in job)

Inputs are expected to be normalized skill sets already (see skills.py);
nothing here lowercases or resolves aliases. Pure computation, no I/O.
"""
from __future__ import annotations

import math
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from career_match.models import MatchResult
from career_match.skills import SkillNormalizer


EMPTY_REQUIREMENTS = "empty_requirements"
ZERO_WEIGHT = "zero_weight"


class SkillFrequencyTable(Mapping[str, int]):
    """
    How many postings list each skill. Immutable once built; a refreshed
    table is swapped in whole rather than edited in place.
    """

    def __init__(self, counts: Optional[Mapping[str, int]] = None, normalizer: Optional[SkillNormalizer] = None):
        merged: Dict[str, int] = {}
        for raw, n in (counts or {}).items():
            if not isinstance(raw, str):
                continue
            keys = normalizer.normalize_token(raw) if normalizer is not None else frozenset({raw.strip().lower()})
            for k in keys:
                if k:
                    merged[k] = merged.get(k, 0) + int(n)
        self._counts = MappingProxyType(merged)

    def __getitem__(self, skill: str) -> int:
        return self._counts[skill]

    def __iter__(self) -> Iterator[str]:
        return iter(self._counts)

    def __len__(self) -> int:
        return len(self._counts)

    def weight(self, skill: str) -> float:
        """Rarer skills weigh more; unknown or non-positive counts weigh 1."""
        n = self._counts.get(skill, 0)
        return 1.0 / n if n > 0 else 1.0

    def __repr__(self) -> str:
        return f"SkillFrequencyTable({len(self)} skills)"


def _weight(
    skill: str,
    weights: Optional[Mapping[str, float]],
    frequency_table: Optional[Mapping[str, int]],
) -> float:
    if weights is not None and skill in weights:
        w = float(weights[skill])
    elif frequency_table is not None:
        if isinstance(frequency_table, SkillFrequencyTable):
            w = frequency_table.weight(skill)
        else:
            n = frequency_table.get(skill, 0)
            w = 1.0 / n if n and n > 0 else 1.0
    else:
        w = 1.0
    if not math.isfinite(w) or w < 0:
        return 0.0
    return w


def _total(
    skills: Iterable[str],
    weights: Optional[Mapping[str, float]],
    frequency_table: Optional[Mapping[str, int]],
) -> float:
    # Sorted so the float sum never depends on set iteration order.
    return math.fsum(_weight(s, weights, frequency_table) for s in sorted(skills))


def score(
    job_skills: Iterable[str],
    candidate_skills: Iterable[str],
    weights: Optional[Mapping[str, float]] = None,
    *,
    frequency_table: Optional[Mapping[str, int]] = None,
    job_id: str = "",
    candidate_id: str = "",
) -> MatchResult:
    """
    Weighted overlap of a job's skills with a candidate's.

    Explicit weights win over frequency-derived ones; without either every
    skill weighs 1. A job with no listed skills never counts as a match:
    it scores 0 and is flagged.
    """
    job = frozenset(job_skills)
    cand = frozenset(candidate_skills)
    matched = job & cand
    unmatched = job - cand

    if not job:
        return MatchResult(
            job_id=job_id,
            candidate_id=candidate_id,
            score=0.0,
            matched_skills=frozenset(),
            unmatched_required=frozenset(),
            flagged=True,
            flag_reason=EMPTY_REQUIREMENTS,
        )

    total = _total(job, weights, frequency_table)
    if total <= 0:
        return MatchResult(
            job_id=job_id,
            candidate_id=candidate_id,
            score=0.0,
            matched_skills=matched,
            unmatched_required=unmatched,
            flagged=True,
            flag_reason=ZERO_WEIGHT,
        )

    value = _total(matched, weights, frequency_table) / total
    return MatchResult(
        job_id=job_id,
        candidate_id=candidate_id,
        score=min(1.0, max(0.0, value)),
        matched_skills=matched,
        unmatched_required=unmatched,
    )


def rank_key(result: MatchResult) -> Tuple[float, int, str]:
    return (-result.score, -len(result.matched_skills), result.job_id)


def candidate_rank_key(result: MatchResult) -> Tuple[float, int, str]:
    return (-result.score, -len(result.matched_skills), result.candidate_id)


def rank(results: Iterable[MatchResult]) -> List[MatchResult]:
    """Best first: score, then more matched skills, then job id ascending."""
    return sorted(results, key=lambda r: (*rank_key(r), r.candidate_id))


def explain(result: MatchResult, normalizer: Optional[SkillNormalizer] = None) -> List[str]:
    """Human-readable reasons for a score."""
    reasons: List[str] = []
    if result.flagged:
        if result.flag_reason == EMPTY_REQUIREMENTS:
            reasons.append("Job lists no required skills; not treated as a match")
        elif result.flag_reason == ZERO_WEIGHT:
            reasons.append("All required skills carry zero weight")

    reasons.append(f"Score {round(result.score * 100.0, 2)}%")
    if result.matched_skills:
        reasons.append("Matched: " + ", ".join(sorted(result.matched_skills)))
    if result.unmatched_required:
        reasons.append("Missing: " + ", ".join(sorted(result.unmatched_required)))

    if normalizer is not None and result.unmatched_required:
        # Related skills are informational only; they never add to the score.
        hints = []
        for skill in sorted(result.matched_skills):
            near = normalizer.related_skills(skill) & result.unmatched_required
            if near:
                hints.append(f"{skill} (related: {', '.join(sorted(near))})")
        if hints:
            reasons.append("Adjacent experience: " + "; ".join(hints))
    return reasons


def skill_counts(job_skill_sets: Iterable[FrozenSet[str]]) -> Dict[str, int]:
    """Build raw counts for a SkillFrequencyTable from normalized job skill sets."""
    counts: Dict[str, int] = {}
    for skills in job_skill_sets:
        for s in skills:
            counts[s] = counts.get(s, 0) + 1
    return counts
