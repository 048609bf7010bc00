import threading

import pytest

from career_match.errors import FetchError, PipelineCancelled
from career_match.retry import backoff_delay, call_with_retry


def test_backoff_grows_and_caps():
    assert backoff_delay(1, 0.5, 30, jitter=False) == 0.5
    assert backoff_delay(3, 0.5, 30, jitter=False) == 2.0
    assert backoff_delay(20, 0.5, 30, jitter=False) == 30


@pytest.mark.parametrize("attempt", [1, 2, 5, 12])
def test_backoff_jitter_stays_in_bounds(attempt):
    for _ in range(50):
        d = backoff_delay(attempt, 1.0, 8.0)
        assert 0.0 <= d <= 8.0


def test_retries_retryable_errors_until_success():
    seen = []

    def fn(attempt):
        seen.append(attempt)
        if attempt < 3:
            raise FetchError.timeout("https://acme.com")
        return "ok"

    assert call_with_retry(fn, retry_limit=3, base_delay=0, max_delay=0) == "ok"
    assert seen == [1, 2, 3]


def test_gives_up_after_retry_limit():
    calls = []

    def fn(attempt):
        calls.append(attempt)
        raise FetchError.from_status("https://acme.com", 503)

    with pytest.raises(FetchError):
        call_with_retry(fn, retry_limit=2, base_delay=0, max_delay=0)
    assert calls == [1, 2, 3]


def test_non_retryable_propagates_immediately():
    calls = []

    def fn(attempt):
        calls.append(attempt)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        call_with_retry(fn, retry_limit=5, base_delay=0, max_delay=0)
    assert calls == [1]


def test_cancelled_before_first_attempt():
    event = threading.Event()
    event.set()
    with pytest.raises(PipelineCancelled):
        call_with_retry(lambda n: "never", retry_limit=1, cancel_event=event)


def test_on_retry_is_told_the_delay():
    notes = []

    def fn(attempt):
        if attempt == 1:
            raise FetchError.timeout("https://acme.com")
        return attempt

    result = call_with_retry(
        fn, retry_limit=1, base_delay=0, max_delay=0, on_retry=lambda n, e, d: notes.append((n, d))
    )
    assert result == 2
    assert notes == [(1, 0.0)]


def test_resumed_sequence_keeps_the_total_attempt_count():
    seen = []

    def fn(attempt):
        seen.append(attempt)
        raise FetchError.timeout("https://acme.com")

    with pytest.raises(FetchError):
        call_with_retry(fn, retry_limit=3, base_delay=0, max_delay=0, first_attempt=3)
    assert seen == [3, 4]
