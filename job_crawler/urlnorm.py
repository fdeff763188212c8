"""URL normalization helpers: stable job identity, domains and list-page templates."""

from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import parse_qsl, quote, quote_plus, urlencode, urlparse, urlunparse

_TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "ref",
    "refid",
    "trackingid",
    "trk",
    "fbclid",
    "gclid",
    "view_type",
    "ismypage",
    "sc",
}

_PLACEHOLDER = re.compile(r"\{(\w+)\}")

# Query keys that carry the listing page number, search keyword or location.
PAGE_KEYS = ("page", "p", "pg", "pageno", "page_no", "pagenum", "recruitpage", "cpage", "currentpage")
KEYWORD_KEYS = ("q", "query", "keyword", "keywords", "kw", "searchword", "stext", "search", "k")
LOCATION_KEYS = ("location", "loc", "l", "where", "region", "loc_mcd", "local", "area")


def canonical_domain(value: str) -> str:
    """Lowercased hostname without ``www.`` for a URL or bare host."""
    value = value.strip().lower()
    if "//" not in value:
        value = "//" + value
    host = urlparse(value).hostname or ""
    if host.startswith("www."):
        host = host[4:]
    return host


def _is_tracking(key: str) -> bool:
    key = key.lower()
    return key in _TRACKING_PARAMS or key.startswith("utm_")


def canonicalize_job_url(url: str) -> str:
    """Strip tracking noise from a job URL so derived ids stay stable between crawls.

    Lowercases scheme and host, drops ``www.``, a trailing slash, the fragment
    and tracking parameters, and sorts what is left of the query.
    """
    url = (url or "").strip()
    parsed = urlparse(url)
    if not (parsed.scheme and parsed.netloc):
        return url

    netloc = parsed.netloc.lower().removeprefix("www.")
    path = parsed.path.rstrip("/") or "/"
    kept = sorted(
        (k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if not _is_tracking(k)
    )
    return urlunparse((parsed.scheme.lower(), netloc, path, "", urlencode(kept), ""))


def expand_template(template: str, values: Mapping[str, Any], page: int) -> str:
    """Fill ``{placeholder}`` slots in a list-page URL template.

    Query parameters left empty after substitution are dropped so that an
    unused ``{keyword}`` does not send ``q=`` to the site.
    """
    filled = dict(values)
    filled["page"] = page

    parsed = urlparse(template)

    def _sub(match: re.Match, quoter) -> str:
        name = match.group(1)
        if name not in filled:
            return match.group(0)
        value = filled[name]
        return "" if value is None else quoter(str(value))

    path = _PLACEHOLDER.sub(lambda m: _sub(m, lambda v: quote(v, safe="")), parsed.path)
    query_pairs = []
    for key, raw in parse_qsl(parsed.query, keep_blank_values=True):
        value = _PLACEHOLDER.sub(lambda m: _sub(m, str), raw)
        if value == "":
            continue
        query_pairs.append((key, value))
    query = "&".join(f"{quote_plus(k)}={quote_plus(v)}" for k, v in query_pairs)
    return urlunparse(parsed._replace(path=path, query=query))


def template_from_url(url: str) -> str:
    """Turn a concrete listing URL into a list-page template.

    Known page/keyword/location query keys become placeholders; a ``page``
    key is appended when the URL has none.
    """
    parsed = urlparse(url)
    pairs = []
    has_page = False
    for key, value in parse_qsl(parsed.query, keep_blank_values=True):
        lk = key.lower()
        if lk in PAGE_KEYS and not has_page:
            pairs.append((key, "{page}"))
            has_page = True
        elif lk in KEYWORD_KEYS:
            pairs.append((key, "{keyword}"))
        elif lk in LOCATION_KEYS:
            pairs.append((key, "{location}"))
        else:
            pairs.append((key, quote_plus(value)))
    if not has_page:
        pairs.append(("page", "{page}"))
    query = "&".join(f"{quote_plus(k)}={v}" for k, v in pairs)
    return urlunparse(parsed._replace(query=query, fragment=""))


_PATH_DIGITS = re.compile(r"\d+")
_QUERY_DIGITS = re.compile(r"(?<==)\d+")
_SLOT = re.compile(r"(\{id\}|\{n\})")


def _digit_slots(url: str) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Split path (+query) into literal text around its digit runs."""
    parsed = urlparse(url)
    literals, numbers = [""], []
    parts = [(parsed.path or "/", _PATH_DIGITS)]
    if parsed.query:
        parts.append(("?" + parsed.query, _QUERY_DIGITS))
    for text, digits in parts:
        pos = 0
        for m in digits.finditer(text):
            literals[-1] += text[pos:m.start()]
            numbers.append(m.group())
            literals.append("")
            pos = m.end()
        literals[-1] += text[pos:]
    return tuple(literals), tuple(numbers)


def detail_id_pattern(urls: Iterable[str]) -> Optional[str]:
    """Detail-page pattern for a sample of detail URLs, with the posting id as ``{id}``.

    Only digit runs that differ between the sampled URLs can be the id; the
    last of those becomes ``{id}`` and any other varying run ``{n}``. Runs that
    are constant across the sample (a company id, a year) stay literal. A
    single URL has nothing to compare, so its last run is the id and earlier
    runs are ``{n}``. Returns None when no URL carries digits or when the
    sampled URLs never differ.
    """
    groups: dict[tuple[str, ...], list[tuple[str, ...]]] = {}
    for url in urls:
        literals, numbers = _digit_slots(url)
        if numbers:
            groups.setdefault(literals, []).append(numbers)
    if not groups:
        return None

    literals, samples = max(groups.items(), key=lambda item: len(item[1]))
    slots = len(literals) - 1
    if len(samples) == 1:
        varying = list(range(slots))
    else:
        varying = [i for i in range(slots) if len({s[i] for s in samples}) > 1]
        if not varying:
            return None

    id_slot = varying[-1]
    out = [literals[0]]
    for i in range(slots):
        if i == id_slot:
            out.append("{id}")
        elif i in varying:
            out.append("{n}")
        else:
            out.append(samples[0][i])
        out.append(literals[i + 1])
    return "".join(out)


def detail_pattern_regex(pattern: str) -> re.Pattern:
    """Compile a detail pattern into a regex capturing its ``{id}`` slot.

    ``{n}`` slots and any ``{id}`` after the first match digits without capturing.
    """
    body = []
    captured = False
    for piece in _SLOT.split(pattern):
        if piece == "{id}" and not captured:
            body.append(r"(\d+)")
            captured = True
        elif piece in ("{id}", "{n}"):
            body.append(r"\d+")
        else:
            body.append(re.escape(piece))
    return re.compile("".join(body))
