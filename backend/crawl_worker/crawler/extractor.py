from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import Any
from urllib.parse import urljoin, urlsplit

from bs4 import BeautifulSoup  # type: ignore
from bs4.element import Tag  # type: ignore

from crawl_worker.models import SeoSignals
from .scoring import structural_score

logger = logging.getLogger(__name__)

JSON_LD_TYPE = "application/ld+json"


def _attr(tag: Tag, name: str) -> str:
    value = tag.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


def _meta_contents(soup: BeautifulSoup, name: str) -> list[str]:
    return [
        _attr(tag, "content")
        for tag in soup.find_all("meta")
        if _attr(tag, "name").strip().lower() == name
    ]


def _title_text(soup: BeautifulSoup) -> str:
    title = soup.find("title")
    if title is None:
        return ""
    return " ".join(title.get_text(" ").split())


def _canonical_href(soup: BeautifulSoup) -> str | None:
    for link in soup.find_all("link"):
        rel = link.get("rel") or []
        if isinstance(rel, str):
            rel = rel.split()
        if "canonical" not in [r.lower() for r in rel]:
            continue
        href = _attr(link, "href").strip()
        if href:
            return href
    return None


def _check_canonical(href: str | None, final_url: str) -> tuple[bool, str | None]:
    if href is None:
        return True, None
    try:
        resolved = urljoin(final_url, href)
        parts = urlsplit(resolved)
    except ValueError:
        return False, None
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return False, resolved
    # Exact string equality; tracking params or host case count as a mismatch.
    return resolved == final_url, resolved


def _iter_types(node: Any) -> Iterator[str]:
    if isinstance(node, list):
        for item in node:
            yield from _iter_types(item)
    elif isinstance(node, dict):
        t = node.get("@type")
        if isinstance(t, str):
            yield t
        elif isinstance(t, list):
            yield from (x for x in t if isinstance(x, str))
        if "@graph" in node:
            yield from _iter_types(node["@graph"])


def _schema_types(soup: BeautifulSoup) -> list[str]:
    seen: dict[str, None] = {}
    for script in soup.find_all("script"):
        if _attr(script, "type").split(";")[0].strip().lower() != JSON_LD_TYPE:
            continue
        raw = (script.string or script.get_text() or "").strip()
        if not raw:
            continue
        try:
            parsed = json.loads(raw)
        except (ValueError, RecursionError):
            continue
        for t in _iter_types(parsed):
            seen.setdefault(t, None)
    return list(seen)


def _absent_signals() -> SeoSignals:
    signals = SeoSignals()
    signals.structural_score = structural_score(
        has_title=False, has_meta=False, has_h1=False, indexable=True, canonical_ok=True
    )
    return signals


def extract_seo(html: str | bytes, final_url: str) -> SeoSignals:
    """Derive structural SEO signals from an HTML document.

    Pure function of the markup and the post-redirect URL. Malformed markup
    never raises; anything that cannot be read is reported as absent.
    """
    try:
        if isinstance(html, bytes):
            html = html.decode("utf-8", errors="replace")
        soup = BeautifulSoup(html, "html.parser")

        has_title = bool(_title_text(soup))
        has_meta = any(c.strip() for c in _meta_contents(soup, "description"))
        h1_count = len(soup.find_all("h1"))
        indexable = not any("noindex" in c.lower() for c in _meta_contents(soup, "robots"))
        canonical_ok, canonical_url = _check_canonical(_canonical_href(soup), final_url)
        schema_types = _schema_types(soup)
    except Exception as e:
        logger.debug("SEO extraction failed for %s: %s", final_url, e)
        return _absent_signals()

    return SeoSignals(
        has_title=has_title,
        has_meta=has_meta,
        has_h1=h1_count > 0,
        h1_count=h1_count,
        indexable=indexable,
        canonical_ok=canonical_ok,
        canonical_url=canonical_url,
        schema_types=schema_types,
        structural_score=structural_score(
            has_title=has_title,
            has_meta=has_meta,
            has_h1=h1_count > 0,
            indexable=indexable,
            canonical_ok=canonical_ok,
        ),
    )
