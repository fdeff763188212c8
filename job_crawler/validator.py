"""Quality checks for crawled jobs."""

from __future__ import annotations

from collections import Counter
from datetime import date
from typing import Literal, Optional, Sequence
from urllib.parse import urlparse

from pydantic import BaseModel, Field

from .models import ScrapedJob

Severity = Literal["critical", "high", "medium"]

_MAX_EXPERIENCE_YEARS = 50


class Issue(BaseModel):
    field: str
    message: str
    severity: Optional[Severity] = None


class ValidationResult(BaseModel):
    job_id: str
    source: str
    errors: list[Issue] = Field(default_factory=list)
    warnings: list[Issue] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


class ValidationReport(BaseModel):
    total_jobs: int = 0
    valid_jobs: int = 0
    invalid_jobs: int = 0
    success_rate: float = 0.0
    errors_by_field: dict[str, int] = Field(default_factory=dict)
    warnings_by_field: dict[str, int] = Field(default_factory=dict)
    details: list[ValidationResult] = Field(default_factory=list)


def _blank(value: Optional[str]) -> bool:
    return not value or not value.strip()


def validate_job(job: ScrapedJob, today: Optional[date] = None) -> ValidationResult:
    today = today or date.today()
    result = ValidationResult(job_id=job.id, source=job.source)
    errors, warnings = result.errors, result.warnings

    for name, label in (("id", "Job id"), ("title", "Title"), ("company", "Company"), ("source", "Source")):
        if _blank(getattr(job, name)):
            errors.append(Issue(field=name, message=f"{label} is required", severity="critical"))

    if _blank(job.source_url):
        errors.append(Issue(field="source_url", message="Source URL is required", severity="critical"))
    else:
        parsed = urlparse(job.source_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append(Issue(field="source_url", message="Invalid URL format", severity="high"))

    if job.salary is not None:
        if (job.salary.min or 0) < 0 or (job.salary.max or 0) < 0:
            errors.append(Issue(field="salary", message="Salary cannot be negative", severity="medium"))

    if job.experience is not None:
        if (job.experience.min or 0) < 0 or (job.experience.max or 0) < 0:
            errors.append(Issue(field="experience", message="Experience cannot be negative", severity="medium"))
        high = max(job.experience.min or 0, job.experience.max or 0)
        if high > _MAX_EXPERIENCE_YEARS:
            warnings.append(Issue(field="experience", message="Experience requirement seems unusually high"))

    if _blank(job.location):
        warnings.append(Issue(field="location", message="Location is missing"))

    if not job.deadline:
        warnings.append(Issue(field="deadline", message="Deadline is missing"))
    else:
        try:
            deadline = date.fromisoformat(job.deadline)
        except ValueError:
            errors.append(Issue(field="deadline", message="Invalid deadline format", severity="medium"))
        else:
            if deadline < today:
                warnings.append(Issue(field="deadline", message="Deadline is in the past"))

    if _blank(job.description):
        warnings.append(Issue(field="description", message="Job description is missing"))
    elif len(job.description.strip()) < 10:
        warnings.append(Issue(field="description", message="Job description is too short"))

    return result


def validate_jobs(jobs: Sequence[ScrapedJob], today: Optional[date] = None) -> ValidationReport:
    details = [validate_job(job, today) for job in jobs]
    errors_by_field: Counter = Counter()
    warnings_by_field: Counter = Counter()
    for result in details:
        errors_by_field.update(issue.field for issue in result.errors)
        warnings_by_field.update(issue.field for issue in result.warnings)

    valid = sum(1 for r in details if r.valid)
    total = len(details)
    return ValidationReport(
        total_jobs=total,
        valid_jobs=valid,
        invalid_jobs=total - valid,
        success_rate=round(valid / total * 100, 1) if total else 0.0,
        errors_by_field=dict(errors_by_field),
        warnings_by_field=dict(warnings_by_field),
        details=details,
    )
