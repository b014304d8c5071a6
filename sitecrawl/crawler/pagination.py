"""Pagination template inference for category listings."""

from __future__ import annotations

import re
from typing import Iterable
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

from .constants import PAGE_PLACEHOLDER
from .url import URLRules, normalize_url


PAGE_TWO_PATTERN = re.compile(r"(page=2|/page/2|[?&]p=2)", re.IGNORECASE)
_PATH_PAGE_PATTERN = re.compile(r"/page/2(?=/|$)", re.IGNORECASE)

# Query parameter names tried in order; the path rule sits between them.
_PAGE_PARAM = "page"
_SHORT_PAGE_PARAM = "p"


def _origin(parts) -> tuple[str, str]:  # urllib.parse.SplitResult
    return parts.scheme.lower(), parts.netloc.lower()


def _template_query(query: str, param: str) -> str | None:
    """Replace the value of `param` with the page placeholder, keeping other pairs."""

    pairs = parse_qsl(query, keep_blank_values=True)
    if not any(key == param for key, _ in pairs):
        return None

    out: list[str] = []
    replaced = False
    for key, value in pairs:
        encoded_key = quote(key, safe="")
        if key == param and not replaced:
            out.append(f"{encoded_key}={PAGE_PLACEHOLDER}")
            replaced = True
        elif key != param:
            out.append(f"{encoded_key}={quote(value, safe='')}")
    return "&".join(out)


def derive_pattern(category_url: str, page2_url: str) -> str | None:
    """Infer a page template such as `https://x.test/cat?page={N}`.

    Rules are tried in order: a `page` query parameter, a `/page/2` path
    segment, then a `p` query parameter. Returns `None` when the URLs have
    different origins or no rule matches.
    """

    try:
        first = urlsplit(category_url)
        second = urlsplit(page2_url)
    except ValueError:
        return None
    if not second.scheme or not second.netloc or _origin(first) != _origin(second):
        return None

    query = _template_query(second.query, _PAGE_PARAM)
    if query is not None:
        return urlunsplit((second.scheme, second.netloc, second.path, query, ""))

    if _PATH_PAGE_PATTERN.search(second.path):
        path = _PATH_PAGE_PATTERN.sub(f"/page/{PAGE_PLACEHOLDER}", second.path, count=1)
        return urlunsplit((second.scheme, second.netloc, path, second.query, ""))

    query = _template_query(second.query, _SHORT_PAGE_PARAM)
    if query is not None:
        return urlunsplit((second.scheme, second.netloc, second.path, query, ""))

    return None


def expand_pattern(template: str, page: int) -> str:
    """Substitute a page number into a template from `derive_pattern`."""

    if page < 1:
        raise ValueError("page must be >= 1")
    return template.replace(PAGE_PLACEHOLDER, str(page), 1)


def find_page_two(
    hints: Iterable[str],
    *,
    base: str,
    rules: URLRules | None = None,
) -> str | None:
    """Return the first normalized hint that looks like a second listing page."""

    for hint in hints:
        normalized = normalize_url(hint, base, rules)
        if normalized and PAGE_TWO_PATTERN.search(normalized):
            return normalized
    return None


__all__ = [
    "PAGE_TWO_PATTERN",
    "derive_pattern",
    "expand_pattern",
    "find_page_two",
]
