"""Apply a SitePattern's selectors to listing and detail pages."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from bs4 import BeautifulSoup, Tag
from pydantic import ValidationError

from . import normalize
from .errors import ExtractionAnomaly
from .models import FieldSelector, ScrapedJob, SitePattern, Transform

logger = logging.getLogger(__name__)

# Transform used when a selector leaves the default ``text``.
_FIELD_TRANSFORMS = {
    "detail_link": Transform.url,
    "salary": Transform.salary,
    "experience": Transform.experience,
    "deadline": Transform.date,
    "posted_at": Transform.date,
    "work_type": Transform.work_type,
    "skills": Transform.list,
    "requirements": Transform.list,
    "keywords": Transform.list,
}

_LIST_FIELDS = {"skills", "requirements", "keywords"}
_TEXT_FIELDS = {
    "title", "company", "location", "description", "education",
    "employment_type", "industry",
}
_LIST_ITEM_TAGS = ("a", "li", "span", "em", "strong", "b")


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def select_cards(soup: BeautifulSoup | Tag, card_selector: str) -> list[Tag]:
    return soup.select(card_selector)


def _element_text(el: Tag) -> str:
    return el.get_text(" ", strip=True)


def _list_items(elements: list[Tag]) -> list[str]:
    if len(elements) > 1:
        return [_element_text(el) for el in elements]
    el = elements[0]
    children = [c for c in el.find_all(_LIST_ITEM_TAGS) if _element_text(c)]
    if len(children) > 1:
        return [_element_text(c) for c in children]
    return normalize.split_list(_element_text(el))


def read_raw(scope: Tag, selector: FieldSelector, transform: Transform) -> Any:
    """Raw string (or list of strings for ``list``) located by ``selector``."""
    if selector.locator:
        elements = scope.select(selector.locator)
    else:
        elements = [scope]
    if not elements:
        return None

    if selector.attr:
        value = elements[0].get(selector.attr)
        if isinstance(value, list):
            value = " ".join(value)
        return normalize.apply_regex(value, selector.regex)

    if transform == Transform.list:
        items = _list_items(elements)
        if selector.regex:
            items = [v for v in (normalize.apply_regex(i, selector.regex) for i in items) if v]
        return items
    return normalize.apply_regex(_element_text(elements[0]), selector.regex)


def transform_value(
    raw: Any,
    transform: Transform,
    base_url: str,
    currency: Optional[str] = None,
    today: Optional[date] = None,
) -> Any:
    if raw is None:
        return None
    if transform == Transform.list:
        items = raw if isinstance(raw, list) else normalize.split_list(raw)
        return normalize.unique_items(items)
    text = normalize.clean_text(raw)
    if text is None:
        return None
    if transform == Transform.url:
        return normalize.resolve_url(text, base_url)
    if transform == Transform.number:
        return normalize.parse_number(text)
    if transform == Transform.salary:
        return normalize.parse_salary(text, currency)
    if transform == Transform.experience:
        return normalize.parse_experience(text)
    if transform == Transform.date:
        return normalize.parse_date(text, today)
    if transform == Transform.work_type:
        return normalize.canonical_work_type(text)
    return text


def extract_fields(
    scope: Tag,
    selectors: dict[str, FieldSelector],
    base_url: str,
    currency: Optional[str] = None,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """Apply every selector to ``scope``; fields that do not resolve are left out."""
    values: dict[str, Any] = {}
    for field, selector in selectors.items():
        transform = selector.transform
        if transform == Transform.text:
            transform = _FIELD_TRANSFORMS.get(field, Transform.text)
        value = transform_value(read_raw(scope, selector, transform), transform, base_url, currency, today)
        if value is None or value == []:
            continue
        if field in _TEXT_FIELDS and not isinstance(value, str):
            value = str(value)
        if field in _LIST_FIELDS and isinstance(value, str):
            value = [value]
        values[field] = value
    return values


def _fallback_link(card: Tag, base_url: str) -> Optional[str]:
    for a in card.find_all("a", href=True):
        url = normalize.resolve_url(a["href"], base_url)
        if url:
            return url
    return None


def build_job(values: dict[str, Any], pattern: SitePattern) -> ScrapedJob:
    """Turn extracted field values into a ScrapedJob, or raise ExtractionAnomaly."""
    for field in ("title", "company", "detail_link"):
        if not values.get(field):
            raise ExtractionAnomaly(field, "not found in card")

    source_url = values.pop("detail_link")
    if "work_type" not in pattern.selectors:
        work_type = normalize.canonical_work_type(
            values.get("employment_type"), values.get("location"), values.get("title"),
        )
        if work_type is not None:
            values["work_type"] = work_type
    if "skills" in values:
        values["skills"] = normalize.unique_items(values["skills"], sort=True)

    try:
        return ScrapedJob(
            id=normalize.job_id(pattern.source, source_url, pattern.detail_page_pattern),
            source=pattern.source,
            source_url=source_url,
            company_id=normalize.company_id(values["company"]),
            **values,
        )
    except ValidationError as exc:
        raise ExtractionAnomaly("record", str(exc)) from exc


def extract_job(
    card: Tag,
    pattern: SitePattern,
    base_url: str,
    today: Optional[date] = None,
) -> ScrapedJob:
    values = extract_fields(card, pattern.selectors, base_url, pattern.currency, today)
    if "detail_link" not in values and "detail_link" not in pattern.selectors:
        link = _fallback_link(card, base_url)
        if link:
            values["detail_link"] = link
    return build_job(values, pattern)


def extract_page(
    html: str,
    pattern: SitePattern,
    base_url: str,
    today: Optional[date] = None,
) -> tuple[int, list[ScrapedJob], list[ExtractionAnomaly]]:
    """Extract every card on a listing page.

    Returns ``(card_count, jobs, anomalies)``; a card that fails is reported
    as an anomaly and does not affect its siblings.
    """
    soup = parse_html(html)
    cards = select_cards(soup, pattern.card_selector)
    jobs: list[ScrapedJob] = []
    anomalies: list[ExtractionAnomaly] = []
    for card in cards:
        try:
            jobs.append(extract_job(card, pattern, base_url, today))
        except ExtractionAnomaly as exc:
            anomalies.append(exc)
    return len(cards), jobs, anomalies


def extract_detail(
    html: str,
    pattern: SitePattern,
    base_url: str,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """Field values found on a job's detail page."""
    if not pattern.detail_selectors:
        return {}
    soup = parse_html(html)
    return extract_fields(soup, pattern.detail_selectors, base_url, pattern.currency, today)
