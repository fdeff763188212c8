"""job_crawler: adaptive multi-site job listing crawler with learned site patterns."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence

from .config import EngineConfig, load_config
from .engine import CrawlEngine
from .models import AggregateResult, CrawlParams, SitePattern
from .store import PatternStore

logger = logging.getLogger(__name__)

__all__ = ["CrawlEngine", "CrawlParams", "aggregate_jobs", "learn_site"]


def aggregate_jobs(
    sites: Optional[Sequence[str]] = None,
    params: Optional[CrawlParams] = None,
    config_path: Optional[Path] = None,
    config: Optional[EngineConfig] = None,
    store: Optional[PatternStore] = None,
) -> AggregateResult:
    """Crawl the given sites (default: all configured) and merge the results.

    This is the public synchronous API.

    Args:
        sites: Site names or domains. Unknown domains are crawled from their root.
        params: Search parameters shared by every site.
        config_path: Path to a YAML config override.
        config: Pre-built config (takes precedence over config_path).
        store: Pattern store to use instead of the configured SQLite file.
    """
    if config is None:
        config = load_config(config_path)

    async def _run() -> AggregateResult:
        async with CrawlEngine(config, store=store) as engine:
            return await engine.crawl_all(sites, params)

    result = asyncio.run(_run())
    if result.per_site_errors:
        logger.warning("%d of %d sites failed", len(result.per_site_errors), len(result.requested))
    return result


def learn_site(
    url: str,
    name: Optional[str] = None,
    config_path: Optional[Path] = None,
    config: Optional[EngineConfig] = None,
    store: Optional[PatternStore] = None,
) -> SitePattern:
    """Learn and persist a pattern for a listing page URL."""
    if config is None:
        config = load_config(config_path)

    async def _run() -> SitePattern:
        async with CrawlEngine(config, store=store) as engine:
            return await engine.learn_site(url, name)

    return asyncio.run(_run())
