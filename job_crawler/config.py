"""YAML config loader + Pydantic models."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .models import FieldSelector
from .urlnorm import canonical_domain

_DEFAULT_CONFIG = Path(__file__).parent / "config.default.yaml"

_DEFAULT_DB = Path(
    os.environ.get("JOB_CRAWLER_DB", str(Path.home() / ".local" / "share" / "job_crawler" / "patterns.db"))
)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


class RenderConfig(BaseModel):
    engine: Literal["browser", "static"] = "browser"
    timeout_ms: int = 30000
    retries: int = 1
    retry_delay: float = 1.0
    pool_size: int = 4
    headless: bool = True
    wait_until: str = "networkidle"
    user_agent: str = USER_AGENT


class LearnerConfig(BaseModel):
    min_confidence: float = 0.5
    max_attempts: int = 2
    sample_cards: int = 5
    min_cards: int = 3
    confidence_fields: list[str] = Field(default_factory=lambda: [
        "title", "company", "location", "salary", "detail_link",
    ])
    required_fields: list[str] = Field(default_factory=lambda: ["title", "company", "detail_link"])


class CrawlConfig(BaseModel):
    max_pages: int = 10
    default_limit: int = 50
    page_delay: float = 0.0
    visit_details: bool = False
    description_max_chars: int = 5000
    empty_markers: list[str] = Field(default_factory=lambda: [
        "no results", "no jobs found", "nothing matched",
        "검색결과가 없습니다", "검색 결과가 없습니다", "공고가 없습니다",
    ])


class StoreConfig(BaseModel):
    path: Path = _DEFAULT_DB
    max_age_days: Optional[int] = 30


class AggregateConfig(BaseModel):
    budget_seconds: float = 120.0


class SeedPattern(BaseModel):
    """Hand-written pattern used instead of learning on first contact."""

    card_selector: str
    selectors: dict[str, FieldSelector] = Field(default_factory=dict)
    detail_selectors: dict[str, FieldSelector] = Field(default_factory=dict)
    detail_page_pattern: Optional[str] = None


class SiteConfig(BaseModel):
    name: str
    domain: str
    list_url: str
    # Second page tried by the wide learning probe, e.g. a populated search state.
    alt_url: Optional[str] = None
    currency: Optional[str] = None
    seed: Optional[SeedPattern] = None


class EngineConfig(BaseModel):
    render: RenderConfig = Field(default_factory=RenderConfig)
    learner: LearnerConfig = Field(default_factory=LearnerConfig)
    crawl: CrawlConfig = Field(default_factory=CrawlConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    aggregate: AggregateConfig = Field(default_factory=AggregateConfig)
    sites: list[SiteConfig] = Field(default_factory=list)

    def resolve_site(self, name_or_domain: str) -> SiteConfig:
        """Find a configured site by name or domain; unknown domains get a bare entry."""
        key = name_or_domain.strip().lower()
        domain = canonical_domain(key)
        for site in self.sites:
            if site.name.lower() == key or canonical_domain(site.domain) == domain:
                return site
        return SiteConfig(name=domain, domain=domain, list_url=f"https://{domain}/")


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """Load config from YAML, falling back to defaults."""
    # Packaged defaults first, then the optional user file on top
    with open(_DEFAULT_CONFIG, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if config_path and config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            overrides = yaml.safe_load(f) or {}
        _deep_merge(data, overrides)

    return EngineConfig.model_validate(data)


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base dict."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base
