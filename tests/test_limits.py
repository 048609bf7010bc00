import threading

import pytest

from career_match.errors import ConfigurationError, PipelineCancelled
from career_match.limits import DomainLimiter


def test_subdomains_share_a_key():
    assert DomainLimiter.key_for("https://careers.acme.com/x") == DomainLimiter.key_for("https://jobs.acme.com/y")
    assert DomainLimiter.key_for("https://acme.com") != DomainLimiter.key_for("https://other.com")


def test_rejects_non_positive_limit():
    with pytest.raises(ConfigurationError):
        DomainLimiter(0)


def test_waiting_for_a_slot_can_be_cancelled():
    limiter = DomainLimiter(1, poll_interval=0.01)
    cancel = threading.Event()
    with limiter.slot("https://acme.com/a"):
        cancel.set()
        with pytest.raises(PipelineCancelled):
            with limiter.slot("https://jobs.acme.com/b", cancel):
                pass
    # The first slot was released on exit.
    with limiter.slot("https://acme.com/c", cancel):
        pass


def test_lease_released_early_frees_the_slot_once():
    limiter = DomainLimiter(1, poll_interval=0.01)
    with limiter.slot("https://acme.com/a") as lease:
        assert lease.release()
        assert not lease.release()
        # Another caller can take the slot while the first block is still open.
        with limiter.slot("https://jobs.acme.com/b"):
            pass
    with limiter.slot("https://acme.com/c"):
        pass
