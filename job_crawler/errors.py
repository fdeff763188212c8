"""Error taxonomy for fetching, learning and crawling."""

from __future__ import annotations


class CrawlerError(Exception):
    """Base class for every error raised by job_crawler."""


class FetchError(CrawlerError):
    """A page could not be acquired."""

    def __init__(self, url: str, message: str = ""):
        self.url = url
        super().__init__(f"{message or 'fetch failed'}: {url}")


class FetchTimeout(FetchError):
    def __init__(self, url: str, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(url, f"no response within {timeout_ms}ms")


class FetchBlocked(FetchError):
    """The site answered with a bot-detection page."""

    def __init__(self, url: str, reason: str):
        self.reason = reason
        super().__init__(url, f"blocked ({reason})")


class PatternLearningFailed(CrawlerError):
    """The page loaded but no probing strategy reached the confidence threshold."""

    def __init__(self, url: str, confidence: float, threshold: float, missing: tuple[str, ...] = ()):
        self.url = url
        self.confidence = confidence
        self.threshold = threshold
        self.missing = tuple(missing)
        detail = f"confidence {confidence:.2f} (threshold {threshold:.2f})"
        if self.missing:
            detail += f", required fields not found: {', '.join(self.missing)}"
        super().__init__(f"could not learn a pattern for {url}: {detail}")


class LearningAborted(CrawlerError):
    """The page could not be loaded while learning."""

    def __init__(self, url: str, reason: str):
        self.url = url
        super().__init__(f"learning aborted for {url}: {reason}")


class SiteCrawlFailed(CrawlerError):
    def __init__(self, domain: str, reason: str):
        self.domain = domain
        super().__init__(f"crawl failed for {domain}: {reason}")


class ExtractionAnomaly(CrawlerError):
    """A single card could not be turned into a job. Recovered by skipping the card."""

    def __init__(self, field: str, detail: str = ""):
        self.field = field
        super().__init__(f"{field}: {detail}" if detail else field)


class CrawlBudgetExceeded(CrawlerError):
    def __init__(self, domain: str, budget_seconds: float):
        self.domain = domain
        self.budget_seconds = budget_seconds
        super().__init__(f"{domain} still running after {budget_seconds:g}s budget")


# Transport causes win over the wrapper that surfaced them.
_CAUSE_KINDS: list[tuple[type[BaseException], str]] = [
    (FetchTimeout, "timeout"),
    (CrawlBudgetExceeded, "timeout"),
    (TimeoutError, "timeout"),
    (FetchBlocked, "blocked"),
    (FetchError, "fetch"),
]

_WRAPPER_KINDS: list[tuple[type[BaseException], str]] = [
    (PatternLearningFailed, "learning_failed"),
    (LearningAborted, "learning_aborted"),
    (SiteCrawlFailed, "crawl_failed"),
]


def error_kind(exc: BaseException) -> str:
    """Classify an error, preferring a timeout/block cause anywhere in its chain."""
    chain: list[BaseException] = []
    cur: BaseException | None = exc
    while cur is not None and cur not in chain:
        chain.append(cur)
        cur = cur.__cause__ or cur.__context__

    for cls, kind in _CAUSE_KINDS:
        if any(isinstance(e, cls) for e in chain):
            return kind
    for cls, kind in _WRAPPER_KINDS:
        if isinstance(exc, cls):
            return kind
    return "error"
