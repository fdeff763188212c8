"""Page rendering (crawl4ai browser pool or plain HTTP) + text extraction."""

from __future__ import annotations

import asyncio
import logging
import re
from contextlib import asynccontextmanager
from html.parser import HTMLParser
from typing import Any, AsyncIterator, Callable, Optional, Protocol

import requests

from .config import USER_AGENT, RenderConfig
from .errors import FetchBlocked, FetchError, FetchTimeout
from .models import RenderResult

logger = logging.getLogger(__name__)

_SKIP_TAGS = {"script", "style", "noscript", "svg", "head"}

_BLOCK_STATUSES = {401: "unauthorized", 403: "forbidden", 429: "rate limited"}
_CAPTCHA_MARKERS = re.compile(
    r"captcha|recaptcha|hcaptcha|cf-challenge|challenge-platform|are you a robot|"
    r"verify you are human|unusual traffic|access denied|자동입력 방지|보안문자",
    re.I,
)
# Pages with more visible text than this are real content even if a marker appears.
_BLOCK_TEXT_LIMIT = 1500


class _TextExtractor(HTMLParser):
    """Simple HTML → plain text extractor."""

    def __init__(self):
        super().__init__()
        self._parts: list[str] = []
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs):
        if tag.lower() in _SKIP_TAGS:
            self._skip_depth += 1

    def handle_endtag(self, tag: str):
        if tag.lower() in _SKIP_TAGS and self._skip_depth > 0:
            self._skip_depth -= 1

    def handle_data(self, data: str):
        if self._skip_depth == 0:
            self._parts.append(data)

    def get_text(self) -> str:
        raw = " ".join(self._parts)
        return re.sub(r"\s+", " ", raw).strip()


def html_to_text(html: str, max_chars: Optional[int] = None) -> str:
    extractor = _TextExtractor()
    extractor.feed(html or "")
    text = extractor.get_text()
    return text[:max_chars] if max_chars else text


def detect_block(html: str, status_code: int) -> Optional[str]:
    """Reason the response looks like bot detection, or None."""
    if status_code in _BLOCK_STATUSES:
        return f"HTTP {status_code} {_BLOCK_STATUSES[status_code]}"
    if status_code == 200 and not (html or "").strip():
        return "empty body"
    if _CAPTCHA_MARKERS.search(html or ""):
        if len(html_to_text(html)) < _BLOCK_TEXT_LIMIT:
            return "captcha"
    return None


class Renderer(Protocol):
    async def render(
        self, url: str, timeout_ms: Optional[int] = None, wait_for: Optional[str] = None
    ) -> RenderResult:
        ...


class BrowserPool:
    """Bounded pool of crawl4ai crawlers with scoped acquire/release.

    Instances start lazily. An instance goes back to the idle list only when
    the ``acquire()`` body finishes normally; after an error or cancellation
    it is closed, since its page state is unknown.
    """

    def __init__(self, size: int = 4, factory: Optional[Callable[[], Any]] = None,
                 headless: bool = True, user_agent: str = USER_AGENT):
        if size < 1:
            raise ValueError("pool size must be >= 1")
        self.size = size
        self._factory = factory or (lambda: _default_crawler(headless, user_agent))
        self._slots = asyncio.Semaphore(size)
        self._idle: list[Any] = []
        self._live: set[Any] = set()
        self._closed = False

    @property
    def live(self) -> int:
        return len(self._live)

    @property
    def idle(self) -> int:
        return len(self._idle)

    async def _start(self) -> Any:
        crawler = self._factory()
        # Tracked before start() so a start that fails or is cancelled is still closed.
        self._live.add(crawler)
        try:
            await crawler.start()
        except BaseException:
            await asyncio.shield(self._discard(crawler))
            raise
        logger.debug("Started browser instance (%d live)", len(self._live))
        return crawler

    async def _discard(self, crawler: Any) -> None:
        self._live.discard(crawler)
        try:
            await crawler.close()
        except Exception as e:
            logger.warning("Error closing browser instance: %s", e)

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Any]:
        if self._closed:
            raise RuntimeError("browser pool is closed")
        await self._slots.acquire()
        crawler = None
        try:
            crawler = self._idle.pop() if self._idle else await self._start()
            yield crawler
        except BaseException:
            if crawler is not None:
                await asyncio.shield(self._discard(crawler))
            raise
        else:
            if self._closed:
                await self._discard(crawler)
            else:
                self._idle.append(crawler)
        finally:
            self._slots.release()

    async def close(self) -> None:
        self._closed = True
        for crawler in list(self._live):
            await self._discard(crawler)
        self._idle.clear()


def _default_crawler(headless: bool, user_agent: str) -> Any:
    from crawl4ai import AsyncWebCrawler, BrowserConfig

    return AsyncWebCrawler(
        config=BrowserConfig(headless=headless, user_agent=user_agent, verbose=False)
    )


class _RetryingRenderer:
    def __init__(self, config: RenderConfig):
        self.config = config

    async def render(
        self, url: str, timeout_ms: Optional[int] = None, wait_for: Optional[str] = None
    ) -> RenderResult:
        timeout_ms = timeout_ms or self.config.timeout_ms
        attempts = max(1, self.config.retries + 1)
        for attempt in range(1, attempts + 1):
            try:
                result = await self._render_once(url, timeout_ms, wait_for)
            except FetchBlocked:
                raise
            except FetchError as e:
                if attempt >= attempts:
                    raise
                logger.info("Render attempt %d/%d failed for %s: %s", attempt, attempts, url, e)
                await asyncio.sleep(self.config.retry_delay)
                continue
            reason = detect_block(result.html, result.status_code)
            if reason:
                raise FetchBlocked(url, reason)
            return result
        raise FetchError(url)  # unreachable: loop always returns or raises

    async def _render_once(self, url: str, timeout_ms: int, wait_for: Optional[str]) -> RenderResult:
        raise NotImplementedError


class BrowserRenderer(_RetryingRenderer):
    """Renders pages with crawl4ai so script-built listings are complete."""

    def __init__(self, pool: BrowserPool, config: Optional[RenderConfig] = None):
        super().__init__(config or RenderConfig())
        self.pool = pool

    def _run_config(self, timeout_ms: int, wait_for: Optional[str]) -> Any:
        from crawl4ai import CacheMode, CrawlerRunConfig

        kwargs: dict[str, Any] = {
            "wait_until": self.config.wait_until,
            "page_timeout": timeout_ms,
            "cache_mode": CacheMode.BYPASS,
        }
        if wait_for:
            kwargs["wait_for"] = f"css:{wait_for}"
        return CrawlerRunConfig(**kwargs)

    async def _render_once(self, url: str, timeout_ms: int, wait_for: Optional[str]) -> RenderResult:
        run_config = self._run_config(timeout_ms, wait_for)
        async with self.pool.acquire() as crawler:
            try:
                result = await asyncio.wait_for(
                    crawler.arun(url=url, config=run_config), timeout=timeout_ms / 1000
                )
            except asyncio.TimeoutError as e:
                raise FetchTimeout(url, timeout_ms) from e

        if not result.success:
            message = result.error_message or "render failed"
            if "timeout" in message.lower():
                raise FetchTimeout(url, timeout_ms)
            raise FetchError(url, message)

        return RenderResult(
            html=result.html or "",
            final_url=getattr(result, "redirected_url", None) or result.url or url,
            status_code=result.status_code or 200,
        )


class StaticRenderer(_RetryingRenderer):
    """Plain HTTP GET for sites whose listings are server-rendered."""

    def __init__(self, config: Optional[RenderConfig] = None, session: Optional[requests.Session] = None):
        super().__init__(config or RenderConfig())
        self.session = session or requests.Session()

    def _get(self, url: str, timeout_ms: int) -> requests.Response:
        return self.session.get(
            url,
            headers={"User-Agent": self.config.user_agent},
            timeout=timeout_ms / 1000,
            allow_redirects=True,
        )

    async def _render_once(self, url: str, timeout_ms: int, wait_for: Optional[str]) -> RenderResult:
        try:
            resp = await asyncio.to_thread(self._get, url, timeout_ms)
        except requests.Timeout as e:
            raise FetchTimeout(url, timeout_ms) from e
        except requests.RequestException as e:
            raise FetchError(url, str(e)) from e

        if resp.status_code >= 400 and resp.status_code not in _BLOCK_STATUSES:
            raise FetchError(url, f"HTTP {resp.status_code}")
        return RenderResult(html=resp.text, final_url=resp.url or url, status_code=resp.status_code)
