"""Aggregation Orchestrator: concurrent per-site crawls with failure isolation."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable, Optional, Sequence

from .analytics import ArticleAnalyzer, build_company_reports
from .config import AggregateConfig, EngineConfig
from .crawler import SiteCrawler
from .errors import CrawlBudgetExceeded, error_kind
from .models import AggregateResult, Article, CrawlParams, ScrapedJob, SiteError, SiteRun
from .urlnorm import canonical_domain

logger = logging.getLogger(__name__)


def merge_jobs(runs: Iterable[SiteRun]) -> list[ScrapedJob]:
    """Concatenate site results, dropping repeated ids (ids are source-scoped)."""
    seen: set[str] = set()
    jobs: list[ScrapedJob] = []
    for run in runs:
        for job in run.jobs:
            if job.id in seen:
                continue
            seen.add(job.id)
            jobs.append(job)
    return jobs


class Aggregator:
    """Fan a crawl out over several sites under one wall-clock budget."""

    def __init__(
        self,
        crawler: SiteCrawler,
        config: Optional[EngineConfig] = None,
        analyzer: Optional[ArticleAnalyzer] = None,
    ):
        self.crawler = crawler
        self.config = config or crawler.config
        self.analyzer = analyzer

    @property
    def budget(self) -> AggregateConfig:
        return self.config.aggregate

    def default_sites(self) -> list[str]:
        return [site.domain for site in self.config.sites]

    async def crawl_all(
        self,
        sites: Optional[Sequence[str]] = None,
        params: Optional[CrawlParams] = None,
        articles: Sequence[Article] = (),
        budget_seconds: Optional[float] = None,
    ) -> AggregateResult:
        """Crawl every site concurrently; one site's failure never affects another.

        Sites still running when the budget expires are cancelled and
        reported as timeouts; finished sites keep their results.
        """
        params = params or CrawlParams()
        budget = budget_seconds if budget_seconds is not None else self.budget.budget_seconds

        domains: list[str] = []
        for name in sites or self.default_sites():
            domain = canonical_domain(self.config.resolve_site(name).domain)
            if domain and domain not in domains:
                domains.append(domain)

        result = AggregateResult(requested=domains)
        if not domains:
            return result

        logger.info("Crawling %d sites (budget %.0fs)", len(domains), budget)
        tasks = {
            asyncio.create_task(self.crawler.crawl_site(domain, params), name=f"crawl:{domain}"): domain
            for domain in domains
        }
        done, pending = await asyncio.wait(tasks, timeout=budget)

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        runs: list[SiteRun] = []
        for task, domain in tasks.items():
            if task in pending or task.cancelled():
                exc: BaseException = CrawlBudgetExceeded(domain, budget)
                logger.warning("Cancelled %s: %s", domain, exc)
                result.per_site_errors[domain] = SiteError(domain=domain, kind=error_kind(exc), message=str(exc))
                continue
            exc = task.exception()
            if exc is not None:
                kind = error_kind(exc)
                logger.error("Site %s failed [%s]: %s", domain, kind, exc)
                result.per_site_errors[domain] = SiteError(domain=domain, kind=kind, message=str(exc))
                continue
            runs.append(task.result())

        result.sites = runs
        result.jobs = merge_jobs(runs)
        result.companies = build_company_reports(result.jobs, articles, self.analyzer)
        logger.info(
            "Aggregated %d jobs from %d/%d sites",
            len(result.jobs), len(runs), len(domains),
        )
        return result
