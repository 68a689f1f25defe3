from __future__ import annotations

PENALTIES: dict[str, int] = {
    "title": 25,
    "meta": 15,
    "h1": 15,
    "indexable": 30,
    "canonical": 15,
}


def structural_score(
    *, has_title: bool, has_meta: bool, has_h1: bool, indexable: bool, canonical_ok: bool
) -> int:
    """Compute a 0-100 structural score from the on-page SEO checks.

    - Starts at 100
    - Each failed check subtracts its penalty; penalties are independent and add up
    - Clamped to [0, 100], so a page failing every check scores 0
    """
    score = 100
    if not has_title:
        score -= PENALTIES["title"]
    if not has_meta:
        score -= PENALTIES["meta"]
    if not has_h1:
        score -= PENALTIES["h1"]
    if not indexable:
        score -= PENALTIES["indexable"]
    if not canonical_ok:
        score -= PENALTIES["canonical"]
    return max(0, min(100, score))
