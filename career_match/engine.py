# career_match/engine.py
"""
Pipeline orchestrator.

discover():  url -> fetch (retry, per-domain limit) -> extract -> sink
match():     raw skills -> normalize -> score -> rank

Units run on a bounded thread pool. The calling thread is the coordinator:
it dispatches work, enforces per-unit deadlines, calls the sink and builds
the summary. One unit failing never stops the batch; only configuration
errors raise, and they raise from the constructor before any work starts.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from career_match.config import PipelineConfig, build_normalizer, build_registry, validate_config
from career_match.errors import FetchError, PipelineCancelled
from career_match.extraction.extractor import UrlExtractor
from career_match.extraction.profiles import ProfileRegistry
from career_match.fetch import PageFetcher, RequestsFetcher
from career_match.limits import DomainLimiter, SlotLease
from career_match.matching import apply_filters
from career_match.models import (
    BatchSummary,
    CandidateProfile,
    ExtractionReport,
    JobPosting,
    MatchBatch,
    MatchOutcome,
    MatchResult,
    MatchState,
    PageOutcome,
    PageState,
    RawPage,
)
from career_match.retry import backoff_delay, call_with_retry
from career_match.scoring import SkillFrequencyTable, candidate_rank_key, rank_key, score
from career_match.skills import SkillNormalizer

logger = logging.getLogger(__name__)

Sink = Callable[[ExtractionReport], Any]
Source = Union[str, RawPage]
JobLike = Union[JobPosting, Mapping[str, Any]]
CandidateLike = Union[CandidateProfile, Mapping[str, Any]]

# failure_reason values on PageOutcome
FETCH = "fetch"
TIMEOUT = "timeout"
EXTRACTION_ERROR = "extraction_error"
PERSIST_ERROR = "persist_error"
CANCELLED = "cancelled"


class _PageUnit:
    """
    Mutable per-page bookkeeping shared by workers and the coordinator.

    Every submission to the pool runs under the unit's current generation.
    When the coordinator gives up on a run it bumps the generation, and
    writes from the stale worker are ignored from then on.
    """

    def __init__(self, source: Source):
        self.page: Optional[RawPage] = source if isinstance(source, RawPage) else None
        url = source.source_url if isinstance(source, RawPage) else str(source).strip()
        self.outcome = PageOutcome(source_url=url)
        if self.page is not None:
            self.outcome.state = PageState.FETCHED
        self._lock = threading.Lock()
        self._deadline: Optional[float] = None
        self._lease: Optional[SlotLease] = None
        self.generation = 0
        self.resume: Tuple[int, float] = (1, 0.0)

    @property
    def url(self) -> str:
        return self.outcome.source_url

    def is_current(self, gen: int) -> bool:
        with self._lock:
            return gen == self.generation

    def advance(self, state: PageState, gen: int) -> None:
        with self._lock:
            if gen == self.generation:
                self.outcome.state = state

    def begin_attempt(self, n: int, gen: int) -> None:
        with self._lock:
            if gen != self.generation:
                raise PipelineCancelled(f"attempt {n} on {self.url} superseded")
            self.outcome.attempts = n

    def arm(self, seconds: float, gen: int, lease: Optional[SlotLease] = None) -> None:
        with self._lock:
            if gen == self.generation:
                self._deadline = time.monotonic() + seconds
                self._lease = lease

    def disarm(self, gen: int) -> None:
        with self._lock:
            if gen == self.generation:
                self._deadline = None
                self._lease = None

    def expired(self, now: float) -> bool:
        with self._lock:
            return self._deadline is not None and now > self._deadline

    def supersede(self) -> PageState:
        """Drop the running attempt: free its domain slot and ignore its writes."""
        with self._lock:
            self.generation += 1
            self._deadline = None
            lease, self._lease = self._lease, None
            state = self.outcome.state
        if lease is not None:
            lease.release()
        return state

    def fail(self, reason: str, error: str, retryable: bool = False) -> None:
        self.outcome.state = PageState.FAILED
        self.outcome.failure_reason = reason
        self.outcome.error = error
        self.outcome.retryable = retryable


class _RunPool:
    """
    A ThreadPoolExecutor that can be swapped out. A worker stuck past its
    deadline keeps its thread, so after an abandonment new work goes to a
    fresh executor instead of queueing behind it.
    """

    def __init__(self, workers: int):
        self.workers = workers
        self._current: Optional[ThreadPoolExecutor] = None
        self._retired: List[ThreadPoolExecutor] = []

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        if self._current is None:
            self._current = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="career-match")
        return self._current.submit(fn, *args)

    def retire(self) -> None:
        if self._current is not None:
            self._current.shutdown(wait=False)
            self._retired.append(self._current)
            self._current = None

    def shutdown(self) -> None:
        self.retire()
        for executor in self._retired:
            executor.shutdown(wait=False, cancel_futures=True)


def _job_parts(job: JobLike) -> Tuple[str, Any]:
    if isinstance(job, JobPosting):
        return job.id, job.skills
    return str(job["id"]), job.get("skills")


def _candidate_parts(candidate: CandidateLike) -> Tuple[str, Any]:
    if isinstance(candidate, CandidateProfile):
        return candidate.user_id, candidate.skills
    return str(candidate["user_id"]), candidate.get("skills")


class PipelineOrchestrator:
    def __init__(
        self,
        config: Union[PipelineConfig, Mapping[str, Any], None] = None,
        fetcher: Optional[PageFetcher] = None,
        sink: Optional[Sink] = None,
        normalizer: Optional[SkillNormalizer] = None,
        registry: Optional[ProfileRegistry] = None,
        *,
        timeout_grace: float = 1.0,
        poll_interval: float = 0.05,
    ):
        self.config = validate_config(config)
        self.normalizer = normalizer or build_normalizer(self.config)
        self.registry = registry or build_registry(self.config)
        self.extractor = UrlExtractor(self.registry, self.config.client_rendered_threshold)
        self.fetcher = fetcher or RequestsFetcher(self.config.user_agent)
        self.sink = sink
        self.limiter = DomainLimiter(self.config.per_domain_concurrency)
        self.timeout_grace = timeout_grace
        self.poll_interval = poll_interval
        self._cancel = threading.Event()

        self._frequency_table: Optional[SkillFrequencyTable] = None
        if self.config.skill_frequency_table:
            self._frequency_table = SkillFrequencyTable(self.config.skill_frequency_table, self.normalizer)

    # ----------------------------
    # Control
    # ----------------------------

    def cancel(self) -> None:
        """
        Stop dispatching; in-flight units finish or hit their timeout.
        Stays in effect for later runs until reset() is called.
        """
        logger.info("Cancellation requested")
        self._cancel.set()

    def reset(self) -> None:
        """Clear an earlier cancel() so the orchestrator can run again."""
        self._cancel.clear()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def frequency_table(self) -> Optional[SkillFrequencyTable]:
        return self._frequency_table

    def swap_frequency_table(
        self, table: Union[SkillFrequencyTable, Mapping[str, int], None]
    ) -> Optional[SkillFrequencyTable]:
        """Replace the shared table as a whole; runs already started keep the old one."""
        if table is not None and not isinstance(table, SkillFrequencyTable):
            table = SkillFrequencyTable(table, self.normalizer)
        previous = self._frequency_table
        self._frequency_table = table
        return previous

    # ----------------------------
    # Discovery
    # ----------------------------

    def _fetch(self, unit: _PageUnit, cancel: threading.Event, gen: int, first_attempt: int) -> RawPage:
        cfg = self.config

        def attempt(n: int) -> RawPage:
            unit.begin_attempt(n, gen)
            with self.limiter.slot(unit.url, cancel) as lease:
                unit.arm(cfg.fetch_timeout + self.timeout_grace, gen, lease)
                try:
                    return self.fetcher.fetch(unit.url, cfg.fetch_timeout)
                finally:
                    unit.disarm(gen)

        def on_retry(n: int, exc: BaseException, delay: float) -> None:
            logger.warning("Retrying %s in %.1fs (attempt %d failed: %s)", unit.url, delay, n, exc)

        return call_with_retry(
            attempt,
            retry_limit=cfg.retry_limit,
            base_delay=cfg.backoff_base,
            max_delay=cfg.backoff_max,
            cancel_event=cancel,
            on_retry=on_retry,
            first_attempt=first_attempt,
        )

    def _run_page(
        self, unit: _PageUnit, cancel: threading.Event, gen: int, first_attempt: int = 1, delay: float = 0.0
    ) -> ExtractionReport:
        page = unit.page
        if page is None:
            if delay > 0 and cancel.wait(delay):
                raise PipelineCancelled("cancelled during backoff")
            unit.advance(PageState.FETCHING, gen)
            page = self._fetch(unit, cancel, gen, first_attempt)
            unit.advance(PageState.FETCHED, gen)

        if not unit.is_current(gen):
            raise PipelineCancelled(f"run of {unit.url} superseded")
        unit.advance(PageState.EXTRACTING, gen)
        unit.arm(self.config.extract_timeout, gen)
        try:
            return self.extractor.extract(page)
        finally:
            unit.disarm(gen)

    def _submit(
        self, pool: _RunPool, unit: _PageUnit, cancel: threading.Event, first_attempt: int = 1, delay: float = 0.0
    ) -> Future:
        unit.resume = (first_attempt, delay)
        return pool.submit(self._run_page, unit, cancel, unit.generation, first_attempt, delay)

    def _finish(self, unit: _PageUnit, fut: Future) -> None:
        try:
            report = fut.result()
        except PipelineCancelled as e:
            unit.fail(CANCELLED, str(e))
            return
        except FetchError as e:
            reason = TIMEOUT if e.reason == "timeout" else FETCH
            unit.fail(reason, str(e), retryable=e.retryable)
            logger.warning("Failed %s after %d attempt(s): %s", unit.url, unit.outcome.attempts, e)
            return
        except Exception as e:
            reason = EXTRACTION_ERROR if unit.outcome.state == PageState.EXTRACTING else FETCH
            unit.fail(reason, f"{type(e).__name__}: {e}")
            logger.warning("Failed %s (%s): %s", unit.url, reason, e)
            return

        if self.sink is not None:
            try:
                self.sink(report)
            except Exception as e:
                unit.fail(PERSIST_ERROR, f"{type(e).__name__}: {e}")
                logger.warning("Sink rejected report for %s: %s", unit.url, e)
                return

        unit.outcome.report = report
        unit.outcome.state = PageState.EXTRACTED

    def _expire(self, in_flight: Dict[Future, _PageUnit], pool: _RunPool, cancel: threading.Event) -> None:
        """
        Give up on units past their deadline. A timed-out fetch with attempts
        left is resubmitted after backoff; anything else fails as a timeout.
        """
        cfg = self.config
        now = time.monotonic()
        retries: List[Tuple[_PageUnit, int, float]] = []
        abandoned = False
        for fut, unit in list(in_flight.items()):
            if not unit.expired(now):
                continue
            in_flight.pop(fut)
            fut.cancel()
            state = unit.supersede()
            abandoned = True
            attempts = unit.outcome.attempts
            if state == PageState.FETCHING and attempts < 1 + cfg.retry_limit and not cancel.is_set():
                delay = backoff_delay(attempts, cfg.backoff_base, cfg.backoff_max)
                logger.warning("Fetch of %s timed out on attempt %d, retrying in %.1fs", unit.url, attempts, delay)
                retries.append((unit, attempts + 1, delay))
                continue
            limit = cfg.extract_timeout if state == PageState.EXTRACTING else cfg.fetch_timeout
            unit.fail(TIMEOUT, f"{state.value} exceeded {limit}s", retryable=state == PageState.FETCHING)
            logger.warning("Timed out %s while %s", unit.url, state.value)

        if not abandoned:
            return
        # Stuck threads still belong to the current executor; move work that
        # has not started yet to a fresh one.
        pool.retire()
        for fut, unit in list(in_flight.items()):
            if fut.cancel():
                in_flight.pop(fut)
                in_flight[self._submit(pool, unit, cancel, *unit.resume)] = unit
        for unit, first_attempt, delay in retries:
            in_flight[self._submit(pool, unit, cancel, first_attempt, delay)] = unit

    def discover(self, sources: Iterable[Source]) -> BatchSummary:
        """
        Fetch and extract every source. Returns when each unit has reached a
        terminal state, or has been cancelled before dispatch.
        """
        if isinstance(sources, (str, RawPage)):
            sources = [sources]
        cancel = self._cancel
        units: List[_PageUnit] = []
        in_flight: Dict[Future, _PageUnit] = {}
        it = iter(sources)
        exhausted = False

        pool = _RunPool(self.config.concurrency)
        try:
            while True:
                while not exhausted and not cancel.is_set() and len(in_flight) < self.config.concurrency:
                    try:
                        source = next(it)
                    except StopIteration:
                        exhausted = True
                        break
                    unit = _PageUnit(source)
                    units.append(unit)
                    in_flight[self._submit(pool, unit, cancel)] = unit

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for fut in done:
                    unit = in_flight.pop(fut, None)
                    if unit is not None:
                        self._finish(unit, fut)
                self._expire(in_flight, pool, cancel)
        finally:
            # Abandoned units may still hold a thread; do not wait for them.
            pool.shutdown()

        if not exhausted:
            for source in it:
                unit = _PageUnit(source)
                unit.fail(CANCELLED, "not dispatched")
                units.append(unit)

        summary = self._summarize(units)
        logger.info(
            "Discovery finished: %d succeeded, %d ambiguous, %d failed, %d cancelled",
            summary.succeeded, summary.ambiguous, summary.failed, summary.cancelled,
        )
        return summary

    @staticmethod
    def _summarize(units: List[_PageUnit]) -> BatchSummary:
        summary = BatchSummary(outcomes=[u.outcome for u in units])
        for o in summary.outcomes:
            if o.state == PageState.EXTRACTED:
                if o.report is not None and o.report.ambiguous:
                    summary.ambiguous += 1
                else:
                    summary.succeeded += 1
            elif o.failure_reason == CANCELLED:
                summary.cancelled += 1
            else:
                summary.failed += 1
        return summary

    # ----------------------------
    # Matching
    # ----------------------------

    def _score_unit(
        self,
        outcome: MatchOutcome,
        raw: Any,
        fixed: frozenset,
        raw_is_job: bool,
        weights: Optional[Mapping[str, float]],
        table: Optional[SkillFrequencyTable],
    ) -> int:
        outcome.state = MatchState.NORMALIZING
        normalized, malformed = self.normalizer.normalize_with_stats(raw)
        job_skills, candidate_skills = (normalized, fixed) if raw_is_job else (fixed, normalized)

        outcome.state = MatchState.SCORING
        outcome.result = score(
            job_skills,
            candidate_skills,
            weights,
            frequency_table=table,
            job_id=outcome.job_id,
            candidate_id=outcome.candidate_id,
        )
        outcome.state = MatchState.SCORED
        return malformed

    def _run_matches(
        self,
        units: List[Tuple[MatchOutcome, Any]],
        fixed: frozenset,
        raw_is_job: bool,
        *,
        weights: Optional[Mapping[str, float]],
        key: Callable[[MatchResult], Any],
        min_score: float,
        top_n: Optional[int],
        batch: MatchBatch,
    ) -> MatchBatch:
        cancel = self._cancel
        # Snapshot: a swap during the run does not affect it.
        table = self._frequency_table

        futures: Dict[Future, MatchOutcome] = {}
        results: List[MatchResult] = []
        with ThreadPoolExecutor(max_workers=self.config.concurrency, thread_name_prefix="career-match") as pool:
            for outcome, raw in units:
                if cancel.is_set():
                    outcome.state = MatchState.FAILED
                    outcome.error = CANCELLED
                    batch.failures.append(outcome)
                    continue
                fut = pool.submit(self._score_unit, outcome, raw, fixed, raw_is_job, weights, table)
                futures[fut] = outcome

            for fut, outcome in futures.items():
                try:
                    bad = fut.result()
                except Exception as e:
                    outcome.state = MatchState.FAILED
                    outcome.error = f"{type(e).__name__}: {e}"
                    batch.failures.append(outcome)
                    logger.warning("Scoring failed for job=%s candidate=%s: %s", outcome.job_id, outcome.candidate_id, e)
                    continue
                batch.malformed_skills += bad
                results.append(outcome.result)

        results.sort(key=key)
        batch.results = apply_filters(results, min_score=min_score, top_n=top_n)
        batch.failures.sort(key=lambda o: (o.job_id, o.candidate_id))
        if batch.malformed_skills:
            logger.info("Dropped %d malformed skill entries", batch.malformed_skills)
        return batch

    def match(
        self,
        candidate: CandidateLike,
        jobs: Iterable[JobLike],
        *,
        weights: Optional[Mapping[str, float]] = None,
        min_score: float = 0.0,
        top_n: Optional[int] = None,
    ) -> MatchBatch:
        """Rank jobs for one candidate. Raw skills are normalized here."""
        candidate_id, raw = _candidate_parts(candidate)
        cand_skills, malformed = self.normalizer.normalize_with_stats(raw)
        batch = MatchBatch(malformed_skills=malformed)

        units: List[Tuple[MatchOutcome, Any]] = []
        for job in jobs:
            try:
                job_id, job_raw = _job_parts(job)
            except (KeyError, TypeError, AttributeError) as e:
                batch.failures.append(MatchOutcome(
                    job_id="", candidate_id=candidate_id, state=MatchState.FAILED,
                    error=f"malformed job record: {e!r}",
                ))
                continue
            units.append((MatchOutcome(job_id=job_id, candidate_id=candidate_id), job_raw))

        return self._run_matches(
            units, cand_skills, True,
            weights=weights, key=rank_key, min_score=min_score, top_n=top_n, batch=batch,
        )

    def match_candidates(
        self,
        job: JobLike,
        candidates: Iterable[CandidateLike],
        *,
        weights: Optional[Mapping[str, float]] = None,
        min_score: float = 0.0,
        top_n: Optional[int] = None,
    ) -> MatchBatch:
        """Rank candidates for one job; ties go to the smaller candidate id."""
        job_id, raw = _job_parts(job)
        job_skills, malformed = self.normalizer.normalize_with_stats(raw)
        batch = MatchBatch(malformed_skills=malformed)

        units: List[Tuple[MatchOutcome, Any]] = []
        for c in candidates:
            try:
                candidate_id, cand_raw = _candidate_parts(c)
            except (KeyError, TypeError, AttributeError) as e:
                batch.failures.append(MatchOutcome(
                    job_id=job_id, candidate_id="", state=MatchState.FAILED,
                    error=f"malformed candidate record: {e!r}",
                ))
                continue
            units.append((MatchOutcome(job_id=job_id, candidate_id=candidate_id), cand_raw))

        return self._run_matches(
            units, job_skills, False,
            weights=weights, key=candidate_rank_key, min_score=min_score, top_n=top_n, batch=batch,
        )
