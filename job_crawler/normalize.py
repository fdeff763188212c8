"""Field transforms: raw card text -> canonical ScrapedJob values."""

from __future__ import annotations

import hashlib
import re
from datetime import date, datetime, timedelta
from typing import Optional
from urllib.parse import urljoin

from dateutil import parser as date_parser

from .models import ExperienceRange, SalaryRange, WorkType
from .urlnorm import canonicalize_job_url, detail_pattern_regex

_WS = re.compile(r"\s+")

# Salary amounts: "4,000", "120k", "3.5천만", "1억"
_AMOUNT_PATTERN = re.compile(
    r"(?P<num>\d{1,3}(?:,\d{3})+|\d+(?:\.\d+)?)\s*(?P<mult>억|천만|만|천|[kK](?![a-zA-Z])|[mM](?![a-zA-Z]))?"
)
_MULTIPLIERS = {
    "억": 100_000_000,
    "천만": 10_000_000,
    "만": 10_000,
    "천": 1_000,
    "k": 1_000,
    "m": 1_000_000,
}
_CURRENCIES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"\$|usd|달러", re.I), "USD"),
    (re.compile(r"€|eur\b", re.I), "EUR"),
    (re.compile(r"£|gbp\b", re.I), "GBP"),
    (re.compile(r"₩|원|krw|만|억", re.I), "KRW"),
]
_MONTHLY_PATTERN = re.compile(r"월급|월\s*\d|/\s*mo(?:nth)?\b|per\s+month|monthly|a\s+month", re.I)
_HOURLY_PATTERN = re.compile(r"시급|/\s*h(?:ou)?r\b|per\s+hour|hourly|an\s+hour", re.I)
_NEGOTIABLE_PATTERN = re.compile(r"협의|내규|면접\s*후|negotiable|competitive|doe\b|tbd", re.I)
_LOWER_BOUND_PATTERN = re.compile(r"이상|부터|\+|\bfrom\b|at\s+least|\bmin(?:imum)?\b", re.I)
_UPPER_BOUND_PATTERN = re.compile(r"이하|까지|up\s+to|\bmax(?:imum)?\b", re.I)

_ENTRY_LEVEL_PATTERN = re.compile(
    r"신입|entry[\s-]?level|new[\s-]?grad|no\s+experience|graduate", re.I
)
_EXPERIENCE_RANGE = re.compile(r"(\d{1,2})\s*(?:년|years?|yrs?)?\s*[~\-–]\s*(\d{1,2})")
_EXPERIENCE_MIN = re.compile(r"(\d{1,2})\s*(?:년|years?|yrs?)?\s*(?:\+|↑|이상|or\s+more)")
_EXPERIENCE_SINGLE = re.compile(r"(\d{1,2})\s*(?:년|years?|yrs?)\b", re.I)
_ANY_EXPERIENCE_PATTERN = re.compile(r"무관|any\s+experience|all\s+levels", re.I)

_ALWAYS_OPEN_PATTERN = re.compile(
    r"상시|채용\s*시|수시|always|ongoing|rolling|until\s+filled|open\s+until", re.I
)
_TODAY_PATTERN = re.compile(r"오늘|today", re.I)
_TOMORROW_PATTERN = re.compile(r"내일|tomorrow", re.I)
_YESTERDAY_PATTERN = re.compile(r"어제|yesterday", re.I)
_HOURS_AGO_PATTERN = re.compile(r"\d+\s*(?:(?:hours?|hrs?|minutes?|mins?)\s+ago|(?:시간|분)\s*전)", re.I)
_DAYS_AGO_PATTERN = re.compile(r"(\d{1,3})\+?\s*(?:days?\s+ago|일\s*전)", re.I)
_WEEKS_AGO_PATTERN = re.compile(r"(\d{1,2})\+?\s*(?:weeks?\s+ago|주\s*전)", re.I)
_D_DAY_PATTERN = re.compile(r"\bD\s*-\s*(\d{1,3})\b", re.I)
_ISO_DATE = re.compile(r"(\d{4})[-./](\d{1,2})[-./](\d{1,2})")
_MONTH_DAY = re.compile(r"(?<![\d/.])(\d{1,2})[/.](\d{1,2})(?![\d/.])")
_KOREAN_MONTH_DAY = re.compile(r"(\d{1,2})\s*월\s*(\d{1,2})\s*일")
_MONTH_NAME = re.compile(
    r"\b(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\b",
    re.I,
)
_YEAR = re.compile(r"(?<!\d)(?:19|20)\d{2}(?!\d)")

# Canonicalization table for work type; first match wins.
_WORK_TYPE_TABLE: list[tuple[re.Pattern, WorkType]] = [
    (re.compile(r"파견|도급|dispatch|outsourc|agency\s+placement|staff\s+augmentation", re.I), WorkType.dispatch),
    (re.compile(r"재택|원격|remote|work[\s-]?from[\s-]?home|\bwfh\b|telecommut|anywhere", re.I), WorkType.remote),
    (re.compile(r"상주|출근|내근|현장|on[\s-]?site|in[\s-]?office|office[\s-]?based|in[\s-]?person", re.I), WorkType.onsite),
]

_LIST_SPLIT = re.compile(r"\s*[,|/·•;]\s*")


def clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    text = _WS.sub(" ", value).strip()
    return text or None


def apply_regex(text: Optional[str], pattern: Optional[str]) -> Optional[str]:
    """Keep the first group (or whole match) of ``pattern``; None when it does not match."""
    if text is None or not pattern:
        return text
    m = re.search(pattern, text)
    if not m:
        return None
    return m.group(1) if m.groups() else m.group(0)


def parse_number(text: Optional[str]) -> Optional[int]:
    if not text:
        return None
    m = re.search(r"\d[\d,]*", text)
    if not m:
        return None
    return int(m.group(0).replace(",", ""))


def detect_currency(text: str) -> Optional[str]:
    for pattern, code in _CURRENCIES:
        if pattern.search(text):
            return code
    return None


def parse_salary(text: Optional[str], currency: Optional[str] = None) -> Optional[SalaryRange]:
    """Parse salary text into an annual range in whole currency units.

    "4,000~6,000만원" -> 40,000,000..60,000,000 KRW; "$120k - $150k" -> 120000..150000 USD.
    """
    text = clean_text(text)
    if not text or _HOURLY_PATTERN.search(text):
        return None

    amounts: list[tuple[float, Optional[str]]] = []
    for m in _AMOUNT_PATTERN.finditer(text):
        raw = m.group("num").replace(",", "")
        try:
            value = float(raw)
        except ValueError:
            continue
        mult = m.group("mult")
        amounts.append((value, mult.lower() if mult and mult in "kKmM" else mult))
    if not amounts:
        return None
    if _NEGOTIABLE_PATTERN.search(text) and not any(m for _, m in amounts) and detect_currency(text) is None:
        return None

    # "4,000~6,000만원": an amount without a unit takes the next unit, else the previous one.
    values: list[int] = []
    for i, (value, mult) in enumerate(amounts):
        if mult is None:
            later = [m for _, m in amounts[i + 1:] if m]
            earlier = [m for _, m in amounts[:i] if m]
            mult = later[0] if later else (earlier[-1] if earlier else None)
        scaled = int(round(value * _MULTIPLIERS.get(mult or "", 1)))
        if scaled > 0:
            values.append(scaled)
    if not values:
        return None

    if _MONTHLY_PATTERN.search(text):
        values = [v * 12 for v in values]

    currency = detect_currency(text) or currency
    if len(values) == 1:
        (value,) = values
        if _LOWER_BOUND_PATTERN.search(text):
            return SalaryRange(min=value, currency=currency)
        if _UPPER_BOUND_PATTERN.search(text):
            return SalaryRange(max=value, currency=currency)
        return SalaryRange(min=value, max=value, currency=currency)
    return SalaryRange(min=min(values), max=max(values), currency=currency)


def parse_experience(text: Optional[str]) -> Optional[ExperienceRange]:
    text = clean_text(text)
    if not text:
        return None

    m = _EXPERIENCE_RANGE.search(text)
    if m:
        a, b = sorted((int(m.group(1)), int(m.group(2))))
        return ExperienceRange(min=a, max=b)
    m = _EXPERIENCE_MIN.search(text)
    if m:
        return ExperienceRange(min=int(m.group(1)))
    m = _EXPERIENCE_SINGLE.search(text)
    if m:
        return ExperienceRange(min=int(m.group(1)))
    if _ANY_EXPERIENCE_PATTERN.search(text):
        return ExperienceRange(min=0)
    if _ENTRY_LEVEL_PATTERN.search(text):
        if re.search(r"경력|experienced", text, re.I):
            return ExperienceRange(min=0)
        return ExperienceRange(min=0, max=0)
    return None


def _next_month_day(month: int, day: int, today: date) -> Optional[str]:
    try:
        candidate = date(today.year, month, day)
    except ValueError:
        return None
    # "~01/15" read in December refers to next year.
    if (today - candidate).days > 180:
        candidate = candidate.replace(year=today.year + 1)
    return candidate.isoformat()


def parse_date(text: Optional[str], today: Optional[date] = None) -> Optional[str]:
    """Parse deadline/posting text into an ISO date (YYYY-MM-DD).

    Relative phrases ("D-7", "3 days ago", "2주 전") count from ``today``.
    Free-form text goes to dateutil only when it names a month or a year, so
    a stray number is never read as a day of the current month.
    """
    text = clean_text(text)
    if not text:
        return None
    today = today or date.today()

    if _ALWAYS_OPEN_PATTERN.search(text):
        return None
    m = _D_DAY_PATTERN.search(text)
    if m:
        return (today + timedelta(days=int(m.group(1)))).isoformat()
    if _TODAY_PATTERN.search(text) or _HOURS_AGO_PATTERN.search(text):
        return today.isoformat()
    if _TOMORROW_PATTERN.search(text):
        return (today + timedelta(days=1)).isoformat()
    if _YESTERDAY_PATTERN.search(text):
        return (today - timedelta(days=1)).isoformat()
    m = _DAYS_AGO_PATTERN.search(text)
    if m:
        return (today - timedelta(days=int(m.group(1)))).isoformat()
    m = _WEEKS_AGO_PATTERN.search(text)
    if m:
        return (today - timedelta(weeks=int(m.group(1)))).isoformat()

    m = _ISO_DATE.search(text)
    if m:
        try:
            return date(int(m.group(1)), int(m.group(2)), int(m.group(3))).isoformat()
        except ValueError:
            return None
    m = _KOREAN_MONTH_DAY.search(text) or _MONTH_DAY.search(text)
    if m:
        return _next_month_day(int(m.group(1)), int(m.group(2)), today)

    if not (_MONTH_NAME.search(text) or _YEAR.search(text)):
        return None
    try:
        parsed = date_parser.parse(text, fuzzy=True, default=datetime(today.year, today.month, today.day))
    except (ValueError, OverflowError):
        return None
    return parsed.date().isoformat()


def canonical_work_type(*texts: Optional[str]) -> Optional[WorkType]:
    """Map site text to a WorkType; unrecognized text gives None, never the raw string."""
    for text in texts:
        if not text:
            continue
        for pattern, work_type in _WORK_TYPE_TABLE:
            if pattern.search(text):
                return work_type
    return None


def split_list(text: Optional[str]) -> list[str]:
    text = clean_text(text)
    if not text:
        return []
    return [part for part in _LIST_SPLIT.split(text) if part]


def unique_items(items: list[str], sort: bool = False) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        item = clean_text(item)
        if not item or item.lower() in seen:
            continue
        seen.add(item.lower())
        out.append(item)
    return sorted(out, key=str.lower) if sort else out


def resolve_url(href: Optional[str], base_url: str) -> Optional[str]:
    href = (href or "").strip()
    if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
        return None
    return urljoin(base_url, href)


def slugify(value: str) -> str:
    return re.sub(r"[\W_]+", "-", value.lower()).strip("-")


def company_id(company: str) -> str:
    return f"company-{slugify(company)}"


def job_id(source: str, url: str, detail_pattern: Optional[str] = None) -> str:
    """Deterministic id scoped to the source site.

    The native id comes from the detail pattern's ``{id}`` slot. Without one
    the id is a hash of the canonical URL, never a bare digit run from it.
    """
    canonical = canonicalize_job_url(url)
    native = None
    if detail_pattern and "{id}" in detail_pattern:
        m = detail_pattern_regex(detail_pattern).search(canonical)
        if m:
            native = m.group(1)
    if native is None:
        native = hashlib.sha1(canonical.encode("utf-8")).hexdigest()[:12]
    return f"{slugify(source)}-{native}"
