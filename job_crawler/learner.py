"""Pattern Learner: infer card + field selectors for an unseen listing page.

Card detection looks for the structural ancestor that repeats most often
around "signal" elements (title-like links, salary-like text, date-like
text). Fields are then located inside a sample of cards by per-field
scoring rules; a locator is accepted only if it resolves with a positive
score on every sampled card.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Optional

import soupsieve as sv
from bs4 import BeautifulSoup, Tag

from .config import LearnerConfig
from .errors import FetchError, LearningAborted, PatternLearningFailed
from .extract import parse_html
from .fetcher import Renderer
from .models import FieldSelector, SitePattern, Transform, utc_now
from .normalize import resolve_url
from .urlnorm import canonical_domain, canonicalize_job_url, detail_id_pattern, template_from_url

logger = logging.getLogger(__name__)

SALARY_RE = re.compile(
    r"\d[\d,.]*\s*(?:만|천|억|원|k\b|K\b|달러)|[$€£₩]\s*\d|연봉|월급|시급|\bsalary\b|\d\s*(?:usd|krw|eur)\b",
    re.I,
)
DATE_RE = re.compile(
    r"\d{4}[-./]\d{1,2}[-./]\d{1,2}|~\s*\d{1,2}[/.]\d{1,2}|\bD\s*-\s*\d{1,3}\b|오늘\s*마감|내일\s*마감|상시\s*채용|마감",
    re.I,
)
_JOB_HREF_RE = re.compile(r"job|recruit|position|career|posting|view|detail|rec_idx|jd|opening|vacanc", re.I)
_COMPANY_SUFFIX_RE = re.compile(
    r"\b(?:inc|corp|co|ltd|llc|gmbh|plc|group|labs|technologies|systems)\b\.?|㈜|\(주\)|주식회사", re.I
)
_LOCATION_TEXT_RE = re.compile(
    r"서울|경기|인천|부산|대구|대전|광주|울산|세종|강원|충북|충남|전북|전남|경북|경남|제주|"
    r"\bremote\b|\b[A-Z][a-z]+,\s*[A-Z]{2}\b",
)
_HEADINGS = {"h1", "h2", "h3", "h4", "h5", "h6"}
_SKIP_ANCESTORS = {"[document]", "html", "body", "head"}

_TITLE_HINTS = {"title", "tit", "subject", "position", "headline", "heading"}
_COMPANY_HINTS = {"company", "corp", "employer", "org", "firm", "brand", "cmp", "corporation", "organization"}
_LOCATION_HINTS = {"location", "loc", "area", "region", "city", "place", "address", "addr", "workplace"}
_SALARY_HINTS = {"salary", "pay", "wage", "compensation", "sal", "income"}
_DATE_HINTS = {"date", "deadline", "until", "due", "close", "closing", "expire", "expires", "period", "dday"}


# -- element helpers --------------------------------------------------------

def _text(el: Tag) -> str:
    return el.get_text(" ", strip=True)


def _own_text(el: Tag) -> str:
    return " ".join(s.strip() for s in el.find_all(string=True, recursive=False) if s.strip())


def _stable_classes(el: Tag) -> list[str]:
    classes = el.get("class") or []
    return sorted(
        c for c in classes
        if c and not c.startswith(("css-", "sc-")) and not re.search(r"\d{3,}", c)
    )


def _class_tokens(el: Tag) -> set[str]:
    tokens: set[str] = set()
    for cls in el.get("class") or []:
        tokens.update(t for t in re.split(r"[-_\s]+", cls.lower()) if t)
    return tokens


def _signature(el: Tag) -> str:
    classes = _stable_classes(el)
    return el.name + "".join("." + sv.escape(c) for c in classes)


def _has_href(el: Tag) -> bool:
    return el.name == "a" and resolve_url(el.get("href"), "http://x/") is not None


def _in_heading(el: Tag) -> bool:
    return any(p.name in _HEADINGS for p in el.parents)


# -- scoring rules ----------------------------------------------------------

Scorer = Callable[[Tag], float]


def hint(tokens: set[str], weight: float = 2.0) -> Scorer:
    return lambda el: weight if _class_tokens(el) & tokens else 0.0


def text_match(pattern: re.Pattern, weight: float = 1.0) -> Scorer:
    return lambda el: weight if pattern.search(_text(el)) else 0.0


def _heading(el: Tag) -> float:
    return 2.0 if el.name in _HEADINGS else 0.0


def _anchor(el: Tag) -> float:
    return 1.5 if el.name == "a" else 0.0


def _heading_anchor_nesting(el: Tag) -> float:
    if el.name in _HEADINGS and el.find("a") is not None:
        return 1.0
    if el.name == "a" and _in_heading(el):
        return 1.0
    return 0.0


def _link_base(el: Tag) -> float:
    return 1.0


def _href_digits(el: Tag) -> float:
    return 1.0 if re.search(r"\d", el.get("href", "")) else 0.0


def _href_job_keyword(el: Tag) -> float:
    return 1.0 if _JOB_HREF_RE.search(el.get("href", "")) else 0.0


def _title_like_text(el: Tag) -> float:
    return 1.0 if 5 <= len(_text(el)) <= 150 else 0.0


def _link_in_heading(el: Tag) -> float:
    return 1.0 if _in_heading(el) else 0.0


def _plain_text_gate(max_len: int) -> Callable[[Tag], bool]:
    def gate(el: Tag) -> bool:
        text = _text(el)
        return 2 <= len(text) <= max_len and not SALARY_RE.search(text) and not DATE_RE.search(text)
    return gate


@dataclass
class FieldRule:
    """Gate + scoring functions for one canonical field."""

    field: str
    gate: Callable[[Tag], bool]
    scorers: list[Scorer]
    attr: Optional[str] = None
    transform: Transform = Transform.text
    reuse_locator: bool = False  # may share a locator already taken by another field

    def score(self, el: Tag) -> float:
        if not self.gate(el):
            return 0.0
        return sum(s(el) for s in self.scorers)


def default_rules() -> list[FieldRule]:
    """Rules in assignment order."""
    return [
        FieldRule(
            "title",
            gate=lambda el: 2 <= len(_text(el)) <= 200 and not _text(el).isdigit(),
            scorers=[_heading, hint(_TITLE_HINTS), _anchor, _heading_anchor_nesting],
        ),
        FieldRule(
            "detail_link",
            gate=_has_href,
            scorers=[_link_base, _href_digits, _href_job_keyword, _title_like_text, _link_in_heading],
            attr="href",
            transform=Transform.url,
            reuse_locator=True,
        ),
        FieldRule(
            "salary",
            gate=lambda el: len(_text(el)) <= 40 and bool(SALARY_RE.search(_text(el))),
            scorers=[hint(_SALARY_HINTS), text_match(SALARY_RE)],
            transform=Transform.salary,
        ),
        FieldRule(
            "deadline",
            gate=lambda el: len(_text(el)) <= 40 and bool(DATE_RE.search(_text(el))),
            scorers=[hint(_DATE_HINTS), text_match(DATE_RE)],
            transform=Transform.date,
        ),
        FieldRule(
            "company",
            gate=_plain_text_gate(60),
            scorers=[hint(_COMPANY_HINTS), text_match(_COMPANY_SUFFIX_RE)],
        ),
        FieldRule(
            "location",
            gate=_plain_text_gate(60),
            scorers=[hint(_LOCATION_HINTS), text_match(_LOCATION_TEXT_RE)],
        ),
    ]


# -- card detection ---------------------------------------------------------

@dataclass(frozen=True)
class ProbeStrategy:
    name: str
    depth: int
    min_cards: Optional[int] = None  # None: use LearnerConfig.min_cards
    title_min: int = 5
    title_max: int = 150
    require_links: bool = True


STRICT = ProbeStrategy("strict", depth=5)
WIDE = ProbeStrategy("wide", depth=8, min_cards=2, title_min=2, title_max=200, require_links=False)
STRATEGIES = (STRICT, WIDE)


def _signal_kinds(el: Tag, strategy: ProbeStrategy) -> set[str]:
    kinds = set()
    if el.name == "a" and el.get("href") is not None:
        if strategy.title_min <= len(_text(el)) <= strategy.title_max:
            kinds.add("title")
    own = _own_text(el)
    if own and len(own) <= 60:
        if SALARY_RE.search(own):
            kinds.add("salary")
        if DATE_RE.search(own):
            kinds.add("date")
    return kinds


def _group_keys(el: Tag) -> list[str]:
    classes = _stable_classes(el)
    if classes:
        return [f"{el.name}.{sv.escape(c)}" for c in classes]
    parent = el.parent
    if parent is None or parent.name in _SKIP_ANCESTORS:
        return [el.name]
    return [f"{_signature(parent)} > {el.name}"]


def find_card_selector(soup: BeautifulSoup, strategy: ProbeStrategy, min_cards: int) -> Optional[str]:
    """Selector of the best repeating card container, or None."""
    groups: dict[str, dict[int, tuple[Tag, set[str]]]] = {}
    for el in soup.find_all(True):
        kinds = _signal_kinds(el, strategy)
        if not kinds:
            continue
        depth = 0
        for anc in el.parents:
            if anc.name in _SKIP_ANCESTORS or depth >= strategy.depth:
                break
            depth += 1
            for key in _group_keys(anc):
                members = groups.setdefault(key, {})
                _, seen = members.setdefault(id(anc), (anc, set()))
                seen.update(kinds)

    best: Optional[tuple[float, int, str]] = None
    for key, members in groups.items():
        n = len(members)
        if n < min_cards:
            continue
        if strategy.require_links:
            linked = sum(1 for anc, _ in members.values() if anc.name == "a" or anc.find("a", href=True))
            if linked < 0.8 * n:
                continue
        avg_kinds = sum(len(k) for _, k in members.values()) / n
        score = n * avg_kinds
        candidate = (score, n, key)
        # Ties go to the shorter (more general) key.
        if best is None or (score, n, -len(key)) > (best[0], best[1], -len(best[2])):
            best = candidate
    return best[2] if best else None


# -- field inference --------------------------------------------------------

def _path_locator(el: Tag, card: Tag, max_steps: int = 6) -> Optional[str]:
    parts: list[str] = []
    cur = el
    while cur is not card:
        parent = cur.parent
        if parent is None or len(parts) >= max_steps:
            return None
        step = cur.name
        same = parent.find_all(cur.name, recursive=False)
        if len(same) > 1:
            index = next(i for i, s in enumerate(same) if s is cur)
            step += f":nth-of-type({index + 1})"
        parts.append(step)
        cur = parent
    if not parts:
        return ""
    return ":scope > " + " > ".join(reversed(parts))


def _candidate_locators(el: Tag, card: Tag) -> list[str]:
    locators = []
    if _stable_classes(el):
        locators.append(_signature(el))
    path = _path_locator(el, card)
    if path:
        locators.append(path)
    return locators


def _resolve(card: Tag, locator: str) -> Optional[Tag]:
    if not locator:
        return card
    return card.select_one(locator)


def infer_field(rule: FieldRule, cards: list[Tag], taken: set[int]) -> Optional[str]:
    """Best locator for ``rule`` that scores > 0 on every card, or None.

    ``taken`` holds ids of elements already claimed by earlier fields; they
    are not offered again unless the rule reads an attribute.
    """
    candidates: list[str] = []
    for card in cards:
        scope = [card] if rule.attr and card.name == "a" else []
        for el in scope + card.find_all(True):
            if not rule.gate(el):
                continue
            locs = [""] if el is card else _candidate_locators(el, card)
            for loc in locs:
                if loc not in candidates:
                    candidates.append(loc)

    best: Optional[tuple[float, float, int, int, str]] = None
    for loc in candidates:
        scores = []
        for card in cards:
            el = _resolve(card, loc)
            if el is None or (not rule.reuse_locator and id(el) in taken):
                break
            score = rule.score(el)
            if score <= 0:
                break
            scores.append(score)
        else:
            rank = (min(scores), sum(scores), 0 if loc.startswith(":scope") else 1, -len(loc), loc)
            if best is None or rank[:4] > best[:4]:
                best = rank
    return best[4] if best else None


@dataclass
class LearnAttempt:
    """Result of probing one page with one strategy."""

    strategy: str
    url: str
    card_selector: Optional[str] = None
    card_count: int = 0
    selectors: dict[str, FieldSelector] = field(default_factory=dict)
    confidence: float = 0.0
    missing: tuple[str, ...] = ()
    detail_page_pattern: Optional[str] = None


def infer_pattern(
    html: str,
    url: str,
    strategy: ProbeStrategy,
    config: LearnerConfig,
    rules: Optional[list[FieldRule]] = None,
) -> LearnAttempt:
    """Probe one rendered page. Pure: no rendering, no persistence."""
    attempt = LearnAttempt(strategy=strategy.name, url=url)
    soup = parse_html(html)
    min_cards = strategy.min_cards or config.min_cards
    card_selector = find_card_selector(soup, strategy, min_cards)
    if card_selector is None:
        attempt.missing = tuple(config.required_fields)
        return attempt

    cards = soup.select(card_selector)
    attempt.card_selector = card_selector
    attempt.card_count = len(cards)
    sample = cards[: config.sample_cards]

    taken: set[int] = set()
    for rule in rules or default_rules():
        loc = infer_field(rule, sample, taken)
        if loc is None:
            continue
        for card in sample:
            el = _resolve(card, loc)
            if el is not None:
                taken.add(id(el))
        attempt.selectors[rule.field] = FieldSelector(locator=loc, attr=rule.attr, transform=rule.transform)

    found = [f for f in config.confidence_fields if f in attempt.selectors]
    attempt.confidence = len(found) / len(config.confidence_fields) if config.confidence_fields else 0.0
    attempt.missing = tuple(f for f in config.required_fields if f not in attempt.selectors)

    link = attempt.selectors.get("detail_link")
    if link is not None:
        hrefs = []
        for card in sample:
            el = _resolve(card, link.locator)
            href = resolve_url(el.get("href") if el is not None else None, url)
            if href:
                hrefs.append(canonicalize_job_url(href))
        attempt.detail_page_pattern = detail_id_pattern(hrefs)
    return attempt


class PatternLearner:
    """Render a listing page and infer a SitePattern, trying each strategy in turn."""

    def __init__(
        self,
        renderer: Renderer,
        config: Optional[LearnerConfig] = None,
        rules: Optional[list[FieldRule]] = None,
    ):
        self.renderer = renderer
        self.config = config or LearnerConfig()
        self.rules = rules
        self.invocations = 0

    async def _render(self, url: str, cache: dict[str, tuple[str, str]]) -> tuple[str, str]:
        if url not in cache:
            try:
                result = await self.renderer.render(url)
            except FetchError as e:
                raise LearningAborted(url, str(e)) from e
            cache[url] = (result.html, result.final_url or url)
        return cache[url]

    async def learn(
        self,
        url: str,
        name: Optional[str] = None,
        list_url: Optional[str] = None,
        currency: Optional[str] = None,
        alt_url: Optional[str] = None,
        domain: Optional[str] = None,
    ) -> SitePattern:
        """Learn a pattern from ``url``.

        Raises LearningAborted when a page cannot be rendered and
        PatternLearningFailed when no strategy reaches ``min_confidence``
        with every required field. Nothing is persisted here.
        """
        self.invocations += 1
        threshold = self.config.min_confidence
        cache: dict[str, tuple[str, str]] = {}
        best: Optional[LearnAttempt] = None

        strategies = STRATEGIES[: max(1, self.config.max_attempts)]
        for strategy in strategies:
            probe_url = alt_url if strategy is WIDE and alt_url else url
            html, final_url = await self._render(probe_url, cache)
            attempt = infer_pattern(html, final_url, strategy, self.config, self.rules)
            logger.info(
                "Probe %s on %s: cards=%s (%d) confidence=%.2f fields=%s",
                strategy.name, probe_url, attempt.card_selector, attempt.card_count,
                attempt.confidence, sorted(attempt.selectors),
            )
            if best is None or attempt.confidence > best.confidence:
                best = attempt
            if attempt.confidence >= threshold and not attempt.missing:
                return self._to_pattern(attempt, domain or url, url, name, list_url, currency)

        if best is None:
            raise PatternLearningFailed(url, 0.0, threshold, tuple(self.config.required_fields))
        raise PatternLearningFailed(url, best.confidence, threshold, best.missing)

    def _to_pattern(
        self,
        attempt: LearnAttempt,
        domain: str,
        url: str,
        name: Optional[str],
        list_url: Optional[str],
        currency: Optional[str],
    ) -> SitePattern:
        domain = canonical_domain(domain)
        now = utc_now()
        return SitePattern(
            domain=domain,
            name=name or domain,
            list_page_pattern=list_url or template_from_url(url),
            detail_page_pattern=attempt.detail_page_pattern,
            card_selector=attempt.card_selector or "",
            selectors=attempt.selectors,
            confidence=attempt.confidence,
            currency=currency,
            strategy=attempt.strategy,
            sample_size=min(attempt.card_count, self.config.sample_cards),
            created_at=now,
            last_updated=now,
        )
