"""Site Crawler: one uniform crawler driven by a SitePattern per domain."""

from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Optional

from pydantic import ValidationError

from .config import EngineConfig, SiteConfig
from .errors import FetchError, LearningAborted, PatternLearningFailed, SiteCrawlFailed
from .extract import extract_detail, extract_page
from .fetcher import Renderer, html_to_text
from .learner import PatternLearner
from .models import CrawlParams, ScrapedJob, SitePattern, SiteRun, utc_now
from .normalize import unique_items
from .store import PatternStore
from .urlnorm import canonical_domain, expand_template

logger = logging.getLogger(__name__)


def matches_params(job: ScrapedJob, params: CrawlParams) -> bool:
    """Post-filter on values the job actually carries; absent values pass."""
    salary = job.salary
    if salary is not None:
        if params.salary_min is not None and salary.max is not None and salary.max < params.salary_min:
            return False
        if params.salary_max is not None and salary.min is not None and salary.min > params.salary_max:
            return False
    exp = job.experience
    if exp is not None:
        if params.experience_min is not None and exp.max is not None and exp.max < params.experience_min:
            return False
        if params.experience_max is not None and exp.min is not None and exp.min > params.experience_max:
            return False
    if params.employment_type and job.employment_type:
        if params.employment_type.lower() not in job.employment_type.lower():
            return False
    return True


def _is_template(url: str) -> bool:
    return "{" in url


def _alt_url(site: SiteConfig, params: CrawlParams) -> Optional[str]:
    if not site.alt_url:
        return None
    return expand_template(site.alt_url, params.template_values(), 1)


class SiteCrawler:
    """Resolve (or learn) a domain's pattern, then paginate its listing pages."""

    def __init__(
        self,
        store: PatternStore,
        renderer: Renderer,
        learner: PatternLearner,
        config: Optional[EngineConfig] = None,
        today: Optional[date] = None,
    ):
        self.store = store
        self.renderer = renderer
        self.learner = learner
        self.config = config or EngineConfig()
        self.today = today
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, domain: str) -> asyncio.Lock:
        return self._locks.setdefault(canonical_domain(domain), asyncio.Lock())

    def _seed_pattern(self, site: SiteConfig) -> SitePattern:
        seed = site.seed
        now = utc_now()
        return SitePattern(
            domain=canonical_domain(site.domain),
            name=site.name,
            list_page_pattern=site.list_url,
            detail_page_pattern=seed.detail_page_pattern,
            card_selector=seed.card_selector,
            selectors=seed.selectors,
            detail_selectors=seed.detail_selectors,
            confidence=1.0,
            currency=site.currency,
            strategy="seed",
            created_at=now,
            last_updated=now,
        )

    async def resolve_pattern(self, site: SiteConfig, params: CrawlParams) -> tuple[SitePattern, bool]:
        """Stored pattern, or a freshly seeded/learned and persisted one.

        Returns ``(pattern, created)``. The miss -> learn -> persist sequence
        is serialized per domain.
        """
        domain = canonical_domain(site.domain)
        async with self._lock(domain):
            pattern = self.store.get(domain)
            if pattern is not None:
                return pattern, False

            if site.seed is not None:
                logger.info("No stored pattern for %s, using seed", domain)
                pattern = self._seed_pattern(site)
            else:
                url = expand_template(site.list_url, params.template_values(), 1)
                logger.info("No stored pattern for %s, learning from %s", domain, url)
                pattern = await self.learner.learn(
                    url,
                    name=site.name,
                    list_url=site.list_url if _is_template(site.list_url) else None,
                    currency=site.currency,
                    alt_url=_alt_url(site, params),
                    domain=domain,
                )
            self.store.save(pattern)
            logger.info(
                "Stored pattern for %s (strategy=%s confidence=%.2f)",
                domain, pattern.strategy, pattern.confidence,
            )
            return pattern, True

    async def _relearn(self, stale: SitePattern, url: str, alt_url: Optional[str] = None) -> SitePattern:
        domain = stale.domain
        async with self._lock(domain):
            self.store.delete(domain)
            try:
                pattern = await self.learner.learn(
                    url,
                    name=stale.name,
                    list_url=stale.list_page_pattern,
                    currency=stale.currency,
                    alt_url=alt_url,
                    domain=domain,
                )
            except (PatternLearningFailed, LearningAborted) as e:
                raise SiteCrawlFailed(domain, f"layout changed and relearning failed: {e}") from e
            self.store.save(pattern)
        logger.info("Relearned pattern for %s (confidence %.2f)", domain, pattern.confidence)
        return pattern

    def _looks_empty(self, html: str) -> bool:
        text = html_to_text(html).lower()
        return any(marker.lower() in text for marker in self.config.crawl.empty_markers)

    async def crawl_site(self, site_name: str, params: Optional[CrawlParams] = None) -> SiteRun:
        params = params or CrawlParams()
        site = self.config.resolve_site(site_name)
        domain = canonical_domain(site.domain)
        run = SiteRun(domain=domain)

        pattern, created = await self.resolve_pattern(site, params)
        run.learned = created and pattern.strategy != "seed"
        # A seed was never validated against the live page, so it may still be relearned.
        may_relearn = not run.learned

        crawl_cfg = self.config.crawl
        limit = params.limit or crawl_cfg.default_limit
        values = params.template_values()
        seen: set[str] = set()
        page = 1

        while page <= crawl_cfg.max_pages and len(run.jobs) < limit:
            url = expand_template(pattern.list_page_pattern, values, page)
            result = await self.renderer.render(url)
            base_url = result.final_url or url
            card_count, page_jobs, anomalies = extract_page(result.html, pattern, base_url, self.today)
            run.pages += 1
            run.cards += card_count

            for anomaly in anomalies:
                run.anomalies += 1
                logger.warning("Skipped card on %s page %d: %s", domain, page, anomaly)

            if not page_jobs:
                if page == 1 and not self._looks_empty(result.html):
                    if not may_relearn:
                        raise SiteCrawlFailed(
                            domain,
                            f"pattern matched {card_count} cards but no jobs on a non-empty page: {url}",
                        )
                    logger.warning(
                        "Pattern for %s matched %d cards on %s, treating as layout drift",
                        domain, card_count, url,
                    )
                    pattern = await self._relearn(pattern, url, _alt_url(site, params))
                    run.relearned = True
                    may_relearn = False
                    continue
                logger.debug("No jobs on %s page %d, stopping", domain, page)
                break

            if page == 1:
                pattern = pattern.model_copy(update={"last_updated": utc_now()})
                self.store.save(pattern)

            new_jobs = []
            for job in page_jobs:
                if job.id in seen:
                    continue
                seen.add(job.id)
                new_jobs.append(job)
            if not new_jobs:
                logger.debug("Page %d of %s repeats earlier results, stopping", page, domain)
                break
            for job in new_jobs:
                if not matches_params(job, params):
                    continue
                run.jobs.append(job)
                if len(run.jobs) >= limit:
                    break

            page += 1
            if crawl_cfg.page_delay and page <= crawl_cfg.max_pages and len(run.jobs) < limit:
                await asyncio.sleep(crawl_cfg.page_delay)

        include_details = params.include_details
        if include_details is None:
            include_details = crawl_cfg.visit_details
        if include_details:
            run.jobs = [await self._visit_detail(job, pattern) for job in run.jobs]

        logger.info(
            "Crawled %s: %d jobs from %d pages (%d cards, %d anomalies)",
            domain, len(run.jobs), run.pages, run.cards, run.anomalies,
        )
        return run

    async def crawl(self, site_name: str, params: Optional[CrawlParams] = None) -> list[ScrapedJob]:
        run = await self.crawl_site(site_name, params)
        return run.jobs

    async def _visit_detail(self, job: ScrapedJob, pattern: SitePattern) -> ScrapedJob:
        try:
            result = await self.renderer.render(job.source_url)
        except FetchError as e:
            logger.warning("Detail page failed for %s: %s", job.source_url, e)
            return job

        values = extract_detail(result.html, pattern, result.final_url or job.source_url, self.today)
        values.pop("detail_link", None)
        if "description" not in values and not job.description:
            text = html_to_text(result.html, self.config.crawl.description_max_chars)
            if text:
                values["description"] = text
        if "skills" in values:
            values["skills"] = unique_items(job.skills + values["skills"], sort=True)
        if not values:
            return job
        try:
            return ScrapedJob.model_validate({**job.model_dump(), **values})
        except ValidationError as e:
            logger.warning("Ignoring detail fields for %s: %s", job.source_url, e)
            return job

    async def learn_site(self, url: str, name: Optional[str] = None, alt_url: Optional[str] = None) -> SitePattern:
        """Learn and persist a pattern for ``url`` regardless of what is stored.

        ``alt_url`` overrides the configured alternate page for the wide probe.
        """
        site = self.config.resolve_site(canonical_domain(url))
        configured = any(s is site for s in self.config.sites)
        async with self._lock(site.domain):
            pattern = await self.learner.learn(
                url,
                name=name or (site.name if configured else None),
                list_url=site.list_url if configured and _is_template(site.list_url) else None,
                currency=site.currency,
                alt_url=alt_url or (_alt_url(site, CrawlParams()) if configured else None),
                domain=site.domain,
            )
            self.store.save(pattern)
        logger.info("Learned pattern for %s (confidence %.2f)", pattern.domain, pattern.confidence)
        return pattern
