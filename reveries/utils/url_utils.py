"""
URL utilities for normalizing citations and extracting domains.
"""

import re
from typing import Iterable, List
from urllib.parse import parse_qsl, urlencode, urlparse

from reveries.models.research import Citation

# Tracking parameters stripped before citations are compared
TRACKING_PARAMS = {
    'utm_source', 'utm_medium', 'utm_campaign', 'utm_content', 'utm_term',
    'fbclid', 'gclid', 'dclid', 'wbraid', 'gbraid', 'gad_source',
    'ref', 'source', 'campaign', 'medium',
}

_NON_WORD = re.compile(r"[^\w\s]")


def normalize_url(url: str) -> str:
    """
    Normalize a URL for deduplication.

    Drops tracking parameters and the fragment, lowercases scheme and host,
    and removes a trailing slash from any non-root path.

    Returns:
        Normalized URL, or an empty string when the URL cannot be parsed
    """
    if not url:
        return ""

    try:
        p = urlparse(url.strip())
    except ValueError:
        return ""
    if not p.scheme or not p.netloc:
        return ""

    origin = f"{p.scheme.lower()}://{p.netloc.lower()}"
    path = p.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"

    params = [
        (k, v) for k, v in parse_qsl(p.query, keep_blank_values=True)
        if k not in TRACKING_PARAMS
    ]
    query = urlencode(params)

    normalized = origin + (path if path != "/" else "")
    if query:
        normalized = f"{origin}{path}?{query}"
    return normalized


def extract_domain(url: str) -> str:
    """
    Extract the domain (netloc) from a URL.

    Returns:
        Lowercase domain or empty string if extraction fails
    """
    if not url:
        return ""

    try:
        p = urlparse(url.strip())
    except ValueError:
        return ""
    if not p.scheme or not p.netloc:
        return ""
    return (p.hostname or "").lower()


def _clean_text(value: str) -> str:
    return _NON_WORD.sub("", value.lower()).strip()


def normalize_source_key(source: Citation) -> str:
    """Dedup key for a citation: normalized URL, else title + first author, else title."""
    if source.url:
        normalized = normalize_url(source.url)
        if normalized:
            return normalized

    if source.title and source.authors:
        return f"{_clean_text(source.title)}|{_clean_text(source.authors[0])}"

    if source.title:
        return _clean_text(source.title)

    return source.url or ""


def dedupe_citations(sources: Iterable[Citation]) -> List[Citation]:
    """Keep the first citation seen for each dedup key, preserving order."""
    seen = set()
    unique: List[Citation] = []
    for source in sources:
        key = normalize_source_key(source)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(source)
    return unique
