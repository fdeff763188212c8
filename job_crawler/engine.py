"""CrawlEngine: builds store, renderer, learner, crawler and aggregator from config."""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Sequence

from .analytics import ArticleAnalyzer
from .config import EngineConfig
from .crawler import SiteCrawler
from .fetcher import BrowserPool, BrowserRenderer, Renderer, StaticRenderer
from .learner import PatternLearner
from .models import AggregateResult, Article, CrawlParams, ScrapedJob, SitePattern, SiteRun
from .orchestrator import Aggregator
from .store import PatternStore, SQLitePatternStore
from .urlnorm import canonical_domain

logger = logging.getLogger(__name__)


class CrawlEngine:
    """Owns the long-lived resources (pattern store, browser pool).

    Use as an async context manager so browsers and the database are
    released on exit::

        async with CrawlEngine(load_config()) as engine:
            result = await engine.crawl_all(["saramin"], CrawlParams(keyword="python"))
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        store: Optional[PatternStore] = None,
        renderer: Optional[Renderer] = None,
        analyzer: Optional[ArticleAnalyzer] = None,
        today: Optional[date] = None,
    ):
        self.config = config or EngineConfig()
        self._owns_store = store is None
        self.store = store or SQLitePatternStore(self.config.store.path, self.config.store.max_age_days)
        self.pool: Optional[BrowserPool] = None
        if renderer is None:
            render_cfg = self.config.render
            if render_cfg.engine == "static":
                renderer = StaticRenderer(render_cfg)
            else:
                self.pool = BrowserPool(
                    render_cfg.pool_size,
                    headless=render_cfg.headless,
                    user_agent=render_cfg.user_agent,
                )
                renderer = BrowserRenderer(self.pool, render_cfg)
        self.renderer = renderer
        self.learner = PatternLearner(renderer, self.config.learner)
        self.crawler = SiteCrawler(self.store, renderer, self.learner, self.config, today=today)
        self.aggregator = Aggregator(self.crawler, self.config, analyzer)

    async def crawl_all(
        self,
        sites: Optional[Sequence[str]] = None,
        params: Optional[CrawlParams] = None,
        articles: Sequence[Article] = (),
    ) -> AggregateResult:
        return await self.aggregator.crawl_all(sites, params, articles)

    async def crawl_site(self, site: str, params: Optional[CrawlParams] = None) -> SiteRun:
        return await self.crawler.crawl_site(site, params)

    async def crawl(self, site: str, params: Optional[CrawlParams] = None) -> list[ScrapedJob]:
        return await self.crawler.crawl(site, params)

    async def learn_site(self, url: str, name: Optional[str] = None, alt_url: Optional[str] = None) -> SitePattern:
        return await self.crawler.learn_site(url, name, alt_url)

    def list_patterns(self) -> list[SitePattern]:
        return self.store.list()

    def forget(self, domain: str) -> bool:
        """Delete a stored pattern; False when nothing was stored."""
        domain = canonical_domain(self.config.resolve_site(domain).domain)
        existed = self.store.get(domain) is not None
        self.store.delete(domain)
        if existed:
            logger.info("Deleted stored pattern for %s", domain)
        return existed

    async def aclose(self) -> None:
        if self.pool is not None:
            await self.pool.close()
        if self._owns_store:
            self.store.close()

    async def __aenter__(self) -> "CrawlEngine":
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
