from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

TRACKING_PARAMS = frozenset({"gclid", "fbclid"})


def _is_tracking_param(key: str) -> bool:
    k = key.lower()
    return k in TRACKING_PARAMS or k.startswith("utm_")


def _lower_host(netloc: str) -> str:
    userinfo, at, hostport = netloc.rpartition("@")
    return f"{userinfo}{at}{hostport.lower()}"


def normalize_url(url: str) -> str:
    """Canonicalize a URL so equivalent spellings collide in storage.

    Drops the fragment and tracking parameters (``utm_*``, ``gclid``,
    ``fbclid``), lowercases the host and removes trailing slashes from any
    path other than the root. Path case is preserved. Strings that are not
    absolute URLs come back stripped but otherwise untouched.
    """
    raw = url.strip()
    try:
        parts = urlsplit(raw)
    except ValueError:
        return raw
    if not parts.scheme or not parts.netloc:
        return raw

    query = parts.query
    if query:
        pairs = parse_qsl(query, keep_blank_values=True)
        kept = [(k, v) for k, v in pairs if not _is_tracking_param(k)]
        if len(kept) != len(pairs):
            query = urlencode(kept)

    path = parts.path
    if path != "/":
        path = path.rstrip("/") or "/"

    return urlunsplit((parts.scheme, _lower_host(parts.netloc), path, query, ""))
