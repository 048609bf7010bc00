import threading
import time

import pytest

from career_match.engine import PipelineOrchestrator
from career_match.errors import ConfigurationError, FetchError
from career_match.fetch import PageFetcher
from career_match.models import (
    CandidateProfile,
    JobPosting,
    MatchState,
    PageState,
    RawPage,
)

JOB_HTML = b'<html><body><a href="/jobs/12345">Engineer</a></body></html>'
SHELL_HTML = b'<html><body><div id="root"></div></body></html>'


class FakeFetcher(PageFetcher):
    """Plays back a script per URL: exceptions are raised, bytes are returned."""

    def __init__(self, script=None, default=JOB_HTML):
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.default = default
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, url, timeout):
        with self._lock:
            self.calls.append((url, timeout))
            steps = self.script.get(url)
            step = steps.pop(0) if steps else self.default
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(url)
        return RawPage(source_url=url, html=step)


def _cfg(**overrides):
    cfg = {"backoff_base": 0, "backoff_max": 0, "fetch_timeout": 5, "extract_timeout": 5, "concurrency": 4}
    cfg.update(overrides)
    return cfg


def _outcome(summary, url):
    return next(o for o in summary.outcomes if o.source_url == url)


def test_timeout_twice_then_success_ends_extracted():
    url = "https://acme.com/careers"
    fetcher = FakeFetcher({url: [FetchError.timeout(url), FetchError.timeout(url), JOB_HTML]})
    orch = PipelineOrchestrator(_cfg(retry_limit=3), fetcher=fetcher)

    summary = orch.discover([url])

    o = _outcome(summary, url)
    assert o.state == PageState.EXTRACTED
    assert o.attempts == 3
    assert summary.succeeded == 1
    assert summary.failed == 0
    assert len(fetcher.calls) == 3
    assert {l.candidate_url for l in summary.links} == {"https://acme.com/jobs/12345"}


def test_retries_exhausted_marks_failed_without_aborting_batch():
    bad, good = "https://bad.example.com/careers", "https://acme.com/careers"
    fetcher = FakeFetcher({bad: [FetchError.from_status(bad, 503)] * 10})
    orch = PipelineOrchestrator(_cfg(retry_limit=2), fetcher=fetcher)

    summary = orch.discover([bad, good])

    o = _outcome(summary, bad)
    assert o.state == PageState.FAILED
    assert o.attempts == 3
    assert o.retryable
    assert o.failure_reason == "fetch"
    assert _outcome(summary, good).state == PageState.EXTRACTED
    assert (summary.succeeded, summary.failed) == (1, 1)


def test_non_retryable_status_is_not_retried():
    url = "https://acme.com/gone"
    fetcher = FakeFetcher({url: [FetchError.from_status(url, 404)]})
    orch = PipelineOrchestrator(_cfg(retry_limit=3), fetcher=fetcher)

    o = _outcome(orch.discover([url]), url)
    assert o.state == PageState.FAILED
    assert o.attempts == 1
    assert not o.retryable


def test_extraction_error_is_isolated():
    orch = PipelineOrchestrator(_cfg(), fetcher=FakeFetcher())
    real = orch.extractor

    class Boom:
        def extract(self, page, site_profile=None):
            if "boom" in page.source_url:
                raise RuntimeError("parser exploded")
            return real.extract(page, site_profile)

    orch.extractor = Boom()
    summary = orch.discover(["https://boom.acme.com/careers", "https://acme.com/careers"])

    o = _outcome(summary, "https://boom.acme.com/careers")
    assert o.state == PageState.FAILED
    assert o.failure_reason == "extraction_error"
    assert "parser exploded" in o.error
    assert summary.succeeded == 1


def test_hung_fetch_times_out():
    release = threading.Event()
    slow, fast = "https://slow.example.com/careers", "https://acme.com/careers"

    def hang(url):
        release.wait(10)
        return RawPage(source_url=url, html=JOB_HTML)

    fetcher = FakeFetcher({slow: [hang]})
    orch = PipelineOrchestrator(
        _cfg(fetch_timeout=0.1, retry_limit=0), fetcher=fetcher, timeout_grace=0.05, poll_interval=0.01
    )
    try:
        started = time.monotonic()
        summary = orch.discover([slow, fast])
        elapsed = time.monotonic() - started
    finally:
        release.set()

    o = _outcome(summary, slow)
    assert o.state == PageState.FAILED
    assert o.failure_reason == "timeout"
    assert _outcome(summary, fast).state == PageState.EXTRACTED
    assert elapsed < 5


def test_slow_extraction_times_out_and_late_result_is_discarded():
    reports = []
    orch = PipelineOrchestrator(
        _cfg(extract_timeout=0.3), fetcher=FakeFetcher(), sink=reports.append, poll_interval=0.01
    )
    real = orch.extractor

    class Slow:
        def extract(self, page, site_profile=None):
            if "slow" in page.source_url:
                time.sleep(1.5)
            return real.extract(page, site_profile)

    orch.extractor = Slow()
    summary = orch.discover(["https://slow.acme.com/careers", "https://acme.com/careers"])

    o = _outcome(summary, "https://slow.acme.com/careers")
    assert o.state == PageState.FAILED
    assert o.failure_reason == "timeout"
    time.sleep(1.7)
    assert [r.source_url for r in reports] == ["https://acme.com/careers"]


def test_raw_pages_skip_fetching():
    fetcher = FakeFetcher(default=FetchError("x", "network"))
    orch = PipelineOrchestrator(_cfg(), fetcher=fetcher)

    summary = orch.discover([RawPage(source_url="https://acme.com/careers", html=JOB_HTML)])

    assert fetcher.calls == []
    o = summary.outcomes[0]
    assert o.state == PageState.EXTRACTED
    assert o.attempts == 0


def test_sink_receives_each_extracted_report_once():
    reports = []
    urls = [f"https://acme{i}.com/careers" for i in range(5)]
    orch = PipelineOrchestrator(_cfg(), fetcher=FakeFetcher(), sink=reports.append)

    orch.discover(urls)

    assert sorted(r.source_url for r in reports) == sorted(urls)


def test_sink_failure_marks_unit_failed():
    def sink(report):
        raise IOError("store unavailable")

    orch = PipelineOrchestrator(_cfg(), fetcher=FakeFetcher(), sink=sink)
    summary = orch.discover(["https://acme.com/careers"])
    o = summary.outcomes[0]
    assert o.state == PageState.FAILED
    assert o.failure_reason == "persist_error"
    assert summary.failed == 1


def test_summary_counts_are_exclusive():
    fetcher = FakeFetcher(
        {
            "https://shell.com/careers": [SHELL_HTML],
            "https://down.com/careers": [FetchError.from_status("https://down.com/careers", 404)],
        }
    )
    orch = PipelineOrchestrator(_cfg(), fetcher=fetcher)
    summary = orch.discover(["https://acme.com/careers", "https://shell.com/careers", "https://down.com/careers"])

    assert (summary.succeeded, summary.ambiguous, summary.failed, summary.cancelled) == (1, 1, 1, 0)
    assert len(summary.outcomes) == 3


def test_cancel_stops_dispatch():
    pages = [RawPage(source_url=f"https://acme{i}.com/careers", html=JOB_HTML) for i in range(5)]
    orch = None

    def sink(report):
        orch.cancel()

    orch = PipelineOrchestrator(_cfg(concurrency=1), fetcher=FakeFetcher(), sink=sink)
    summary = orch.discover(iter(pages))

    assert summary.succeeded == 1
    assert summary.cancelled == 4
    assert len(summary.outcomes) == 5


def test_cancel_wakes_backoff_sleep():
    url = "https://acme.com/careers"
    fetcher = FakeFetcher({url: [FetchError.from_status(url, 503)] * 10})
    orch = PipelineOrchestrator(_cfg(retry_limit=5, backoff_base=10, backoff_max=10), fetcher=fetcher)

    timer = threading.Timer(0.2, orch.cancel)
    timer.start()
    started = time.monotonic()
    summary = orch.discover([url])
    elapsed = time.monotonic() - started
    timer.cancel()

    assert elapsed < 5
    assert summary.cancelled == 1
    assert len(fetcher.calls) == 1


def test_per_domain_limit():
    active = {}
    peak = {}
    lock = threading.Lock()

    def tracked(url):
        key = "acme" if "acme" in url else url
        with lock:
            active[key] = active.get(key, 0) + 1
            peak[key] = max(peak.get(key, 0), active[key])
        time.sleep(0.05)
        with lock:
            active[key] -= 1
        return RawPage(source_url=url, html=JOB_HTML)

    urls = [f"https://site{i}.acme.com/careers" for i in range(6)]
    fetcher = FakeFetcher(default=None)
    fetcher.default = tracked

    orch = PipelineOrchestrator(_cfg(concurrency=6, per_domain_concurrency=2), fetcher=fetcher)
    summary = orch.discover(urls)

    assert summary.succeeded == 6
    assert peak["acme"] <= 2


def test_configuration_error_before_any_fetch():
    fetcher = FakeFetcher()
    with pytest.raises(ConfigurationError):
        PipelineOrchestrator({"concurrency": 0}, fetcher=fetcher)
    with pytest.raises(ConfigurationError):
        PipelineOrchestrator({"alias_table": {"a": "b", "b": "a"}}, fetcher=fetcher)
    assert fetcher.calls == []


def test_match_normalizes_scores_and_ranks():
    orch = PipelineOrchestrator(_cfg(), fetcher=FakeFetcher())
    candidate = {"user_id": "u1", "skills": ["Python", "PostgreSQL", None]}
    jobs = [
        {"id": "j2", "skills": ["python", "sql", "React"]},
        {"id": "j1", "skills": ["Python3", "Postgres", ""]},
        {"id": "j3", "skills": []},
        {"skills": ["python"]},
        JobPosting(id="j4", skills={"python", "go"}),
    ]

    batch = orch.match(candidate, jobs)

    assert [r.job_id for r in batch.results] == ["j1", "j4", "j2", "j3"]
    assert batch.results[0].score == pytest.approx(1.0)
    assert batch.results[-1].flag_reason == "empty_requirements"
    assert batch.malformed_skills == 2
    assert len(batch.failures) == 1
    assert batch.failures[0].state == MatchState.FAILED


def test_match_candidates():
    orch = PipelineOrchestrator(_cfg(), fetcher=FakeFetcher())
    job = JobPosting(id="j1", skills={"python", "sql"})
    candidates = [
        CandidateProfile(user_id="zoe", skills={"python"}),
        {"user_id": "amy", "skills": ["SQL"]},
        {"user_id": "bob", "skills": ["python", "sql"]},
    ]
    batch = orch.match_candidates(job, candidates)
    assert [r.candidate_id for r in batch.results] == ["bob", "amy", "zoe"]


def test_swap_frequency_table_between_runs():
    orch = PipelineOrchestrator(_cfg(), fetcher=FakeFetcher())
    candidate = CandidateProfile(user_id="u1", skills={"rust"})
    jobs = [JobPosting(id="j1", skills={"python", "rust"})]

    uniform = orch.match(candidate, jobs).results[0].score
    previous = orch.swap_frequency_table({"python": 100, "rust": 1})
    weighted = orch.match(candidate, jobs).results[0].score

    assert previous is None
    assert uniform == pytest.approx(0.5)
    assert weighted == pytest.approx(1.0 / 1.01)


@pytest.mark.parametrize("concurrency", [1, 4])
def test_hung_fetch_does_not_block_its_domain(concurrency):
    release = threading.Event()
    hung, queued = "https://acme.com/careers/hang", "https://jobs.acme.com/careers"

    def hang(url):
        release.wait(8)
        return RawPage(source_url=url, html=JOB_HTML)

    fetcher = FakeFetcher({hung: [hang]})
    orch = PipelineOrchestrator(
        _cfg(fetch_timeout=0.2, retry_limit=0, per_domain_concurrency=1, concurrency=concurrency),
        fetcher=fetcher,
        timeout_grace=0.05,
        poll_interval=0.01,
    )
    try:
        started = time.monotonic()
        summary = orch.discover([hung, queued])
        elapsed = time.monotonic() - started
    finally:
        release.set()

    assert _outcome(summary, hung).failure_reason == "timeout"
    assert _outcome(summary, queued).state == PageState.EXTRACTED
    assert elapsed < 4


def test_fetch_abandoned_on_timeout_is_retried():
    release = threading.Event()
    url = "https://acme.com/careers"

    def hang(url):
        release.wait(8)
        return RawPage(source_url=url, html=JOB_HTML)

    fetcher = FakeFetcher({url: [hang]})
    orch = PipelineOrchestrator(
        _cfg(fetch_timeout=0.2, retry_limit=3), fetcher=fetcher, timeout_grace=0.05, poll_interval=0.01
    )
    try:
        summary = orch.discover([url])
    finally:
        release.set()

    o = _outcome(summary, url)
    assert o.state == PageState.EXTRACTED
    assert o.attempts == 2
    assert len(fetcher.calls) == 2


def test_abandoned_fetch_uses_up_the_retry_limit():
    release = threading.Event()
    url = "https://acme.com/careers"

    def hang(url):
        release.wait(8)
        return RawPage(source_url=url, html=JOB_HTML)

    fetcher = FakeFetcher({url: [hang, hang]})
    orch = PipelineOrchestrator(
        _cfg(fetch_timeout=0.1, retry_limit=1), fetcher=fetcher, timeout_grace=0.05, poll_interval=0.01
    )
    try:
        summary = orch.discover([url])
    finally:
        release.set()

    o = _outcome(summary, url)
    assert o.state == PageState.FAILED
    assert o.failure_reason == "timeout"
    assert o.retryable
    assert o.attempts == 2


def test_cancel_before_a_run_holds_until_reset():
    fetcher = FakeFetcher()
    orch = PipelineOrchestrator(_cfg(), fetcher=fetcher)
    orch.cancel()

    summary = orch.discover(["https://acme.com/careers", "https://other.com/careers"])
    assert summary.cancelled == 2
    assert fetcher.calls == []

    batch = orch.match({"user_id": "u1", "skills": ["python"]}, [{"id": "j1", "skills": ["python"]}])
    assert batch.results == []
    assert [f.error for f in batch.failures] == ["cancelled"]

    orch.reset()
    assert not orch.cancelled
    assert orch.discover(["https://acme.com/careers"]).succeeded == 1
