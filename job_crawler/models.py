"""Data models for job crawler."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WorkType(str, Enum):
    onsite = "onsite"
    remote = "remote"
    dispatch = "dispatch"


class Transform(str, Enum):
    text = "text"
    url = "url"
    number = "number"
    salary = "salary"
    experience = "experience"
    date = "date"
    work_type = "work_type"
    list = "list"


# Canonical field names a pattern may map.
CARD_FIELDS = (
    "title",
    "company",
    "location",
    "salary",
    "deadline",
    "detail_link",
    "skills",
    "description",
    "experience",
    "education",
    "employment_type",
    "work_type",
    "industry",
    "posted_at",
    "requirements",
    "keywords",
)


class FieldSelector(BaseModel):
    """Locate one field inside a card (or a detail page)."""

    locator: str = ""  # CSS relative to the card; "" is the card itself
    attr: Optional[str] = None
    transform: Transform = Transform.text
    regex: Optional[str] = None


class SitePattern(BaseModel):
    """A learned (or hand-seeded) extraction recipe for one domain."""

    domain: str
    name: str = ""
    list_page_pattern: str
    detail_page_pattern: Optional[str] = None
    card_selector: str
    selectors: dict[str, FieldSelector] = Field(default_factory=dict)
    detail_selectors: dict[str, FieldSelector] = Field(default_factory=dict)
    confidence: float = Field(ge=0.0, le=1.0)
    currency: Optional[str] = None
    strategy: str = "strict"
    sample_size: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    last_updated: datetime = Field(default_factory=utc_now)

    @property
    def source(self) -> str:
        return self.name or self.domain

    def summary(self, include_selectors: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "domain": self.domain,
            "name": self.source,
            "list_page_pattern": self.list_page_pattern,
            "detail_page_pattern": self.detail_page_pattern,
            "confidence": round(self.confidence, 3),
            "strategy": self.strategy,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }
        if include_selectors:
            data["card_selector"] = self.card_selector
            data["selectors"] = {k: v.model_dump(mode="json") for k, v in self.selectors.items()}
        return data


class SalaryRange(BaseModel):
    """Annual amounts in whole units of ``currency``."""

    min: Optional[int] = None
    max: Optional[int] = None
    currency: Optional[str] = None

    @model_validator(mode="after")
    def _ordered(self) -> "SalaryRange":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"salary min {self.min} > max {self.max}")
        return self


class ExperienceRange(BaseModel):
    """Years of experience."""

    min: Optional[int] = None
    max: Optional[int] = None

    @model_validator(mode="after")
    def _ordered(self) -> "ExperienceRange":
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"experience min {self.min} > max {self.max}")
        return self


class ScrapedJob(BaseModel):
    """Canonical job record produced by every site crawl."""

    id: str
    source: str
    source_url: str
    title: str
    company: str
    company_id: str
    location: Optional[str] = None
    description: Optional[str] = None
    requirements: list[str] = Field(default_factory=list)
    skills: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    salary: Optional[SalaryRange] = None
    experience: Optional[ExperienceRange] = None
    education: Optional[str] = None
    employment_type: Optional[str] = None
    work_type: Optional[WorkType] = None
    industry: Optional[str] = None
    deadline: Optional[str] = None
    posted_at: Optional[str] = None


class CrawlParams(BaseModel):
    """Search parameters for one crawl. Also the inbound request body."""

    keyword: Optional[str] = None
    location: Optional[str] = None
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    experience_min: Optional[int] = None
    experience_max: Optional[int] = None
    employment_type: Optional[str] = None
    tech_stack: Optional[str] = None
    benefits: Optional[str] = None
    limit: Optional[int] = Field(default=None, ge=1)
    include_details: Optional[bool] = None

    def template_values(self) -> dict[str, Any]:
        return {
            "keyword": self.keyword,
            "location": self.location,
            "salary_min": self.salary_min,
            "salary_max": self.salary_max,
            "experience_min": self.experience_min,
            "experience_max": self.experience_max,
            "employment_type": self.employment_type,
            "tech_stack": self.tech_stack,
            "benefits": self.benefits,
        }


class RenderResult(BaseModel):
    html: str
    final_url: str
    status_code: int = 200


class SiteRun(BaseModel):
    """Outcome of crawling one domain."""

    domain: str
    jobs: list[ScrapedJob] = Field(default_factory=list)
    pages: int = 0
    cards: int = 0
    anomalies: int = 0
    learned: bool = False
    relearned: bool = False


class SiteError(BaseModel):
    domain: str
    kind: str
    message: str


class Article(BaseModel):
    """A news article fed to the company analyzer."""

    title: str
    content: str = ""
    url: str = ""
    published_at: Optional[str] = None


class CompanyReport(BaseModel):
    company_id: str
    company: str
    job_count: int
    job_ids: list[str] = Field(default_factory=list)
    sources: list[str] = Field(default_factory=list)
    article_mentions: int = 0
    issue_distribution: dict[str, int] = Field(default_factory=dict)
    sentiment: Optional[str] = None


class AggregateResult(BaseModel):
    """Top-level output of crawl_all."""

    jobs: list[ScrapedJob] = Field(default_factory=list)
    per_site_errors: dict[str, SiteError] = Field(default_factory=dict)
    sites: list[SiteRun] = Field(default_factory=list)
    companies: list[CompanyReport] = Field(default_factory=list)
    requested: list[str] = Field(default_factory=list)
    crawled_at: datetime = Field(default_factory=utc_now)

    @property
    def success(self) -> bool:
        # Total failure is the only failure.
        return not self.requested or len(self.per_site_errors) < len(self.requested)

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": self.success,
            "jobs": [j.model_dump(mode="json") for j in self.jobs],
            "count": len(self.jobs),
            "crawled_at": self.crawled_at.isoformat(),
        }
        if self.per_site_errors:
            body["errors"] = [
                f"{e.domain}: [{e.kind}] {e.message}" for e in self.per_site_errors.values()
            ]
        return body
