# career_match/fetch.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests

from career_match.config import DEFAULT_USER_AGENT
from career_match.errors import FetchError
from career_match.models import RawPage

logger = logging.getLogger(__name__)


class PageFetcher(ABC):
    """Fetches one career page. Failures are raised as FetchError."""

    @abstractmethod
    def fetch(self, url: str, timeout: float) -> RawPage:
        pass


class RequestsFetcher(PageFetcher):
    def __init__(self, user_agent: str = DEFAULT_USER_AGENT, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = user_agent
        self.session.headers["Accept"] = "text/html,application/xhtml+xml;q=0.9,*/*;q=0.8"

    def fetch(self, url: str, timeout: float) -> RawPage:
        try:
            response = self.session.get(url, timeout=timeout, allow_redirects=True)
        except requests.Timeout as e:
            raise FetchError.timeout(url, detail=str(e)) from e
        except requests.RequestException as e:
            raise FetchError(url, "network", retryable=True, detail=str(e)) from e

        if not 200 <= response.status_code < 300:
            logger.debug("%s -> HTTP %s", url, response.status_code)
            raise FetchError.from_status(url, response.status_code)

        return RawPage(
            source_url=url,
            html=response.content,
            status_code=response.status_code,
        )
