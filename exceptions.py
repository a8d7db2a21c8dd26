"""
Error taxonomy for the crawler
"""
from typing import Any, List, Optional


class CrawlerError(Exception):
    """Base class for all crawler errors"""


class InvalidInput(CrawlerError):
    """Caller-supplied data failed validation; raised before any navigation"""


class BrowserStartupError(CrawlerError):
    """The page-load capability itself could not be started"""


class TargetError(CrawlerError):
    """A failure scoped to a single target"""

    def __init__(self, url: str, message: str = ""):
        self.url = url
        super().__init__(message or url)


class TargetTimeout(TargetError):
    """A target attempt exceeded the per-request timeout"""


class TargetNavigationFailure(TargetError):
    """Navigation or extraction raised for a target"""


class TargetBlocked(TargetError):
    """An explicit anti-bot signature was detected for a target.

    Never retried. When it aborts a run, ``partial_results`` holds whatever
    was accumulated before the block was seen.
    """

    def __init__(self, url: str, message: str = "", partial_results: Optional[List[Any]] = None):
        super().__init__(url, message or f"Blocked while crawling {url}")
        self.partial_results = partial_results or []
