from __future__ import annotations

import uuid
from typing import Any

from crawl_worker.models import Action, SeoSignals

# One template per deficiency, checked in this order.
ACTION_TEMPLATES: list[tuple[str, dict[str, Any]]] = [
    (
        "has_title",
        {
            "action_type": "missing_title",
            "summary": "Missing title tag",
            "title": "Add a unique title tag",
            "why_it_matters": "Title tags influence rankings and click-through rate.",
            "technical_reason": "No <title> tag was found on the page.",
            "expected_impact_range": "Medium",
            "severity": "high",
            "priority": "high",
            "steps": ["Add a descriptive, keyword-relevant title (50-60 chars)."],
        },
    ),
    (
        "has_meta",
        {
            "action_type": "missing_meta_description",
            "summary": "Missing meta description",
            "title": "Add a meta description",
            "why_it_matters": "Meta descriptions can improve CTR and clarify relevance.",
            "technical_reason": "No meta description tag was found on the page.",
            "expected_impact_range": "Low-Medium",
            "severity": "medium",
            "priority": "medium",
            "steps": ["Write a clear description (120-160 chars) matching the page intent."],
        },
    ),
    (
        "has_h1",
        {
            "action_type": "missing_h1",
            "summary": "Missing H1",
            "title": "Add an H1 heading",
            "why_it_matters": "H1 helps clarify page topic for users and search engines.",
            "technical_reason": "No <h1> tag was found on the page.",
            "expected_impact_range": "Low-Medium",
            "severity": "low",
            "priority": "low",
            "steps": ["Add one clear H1 describing the page topic."],
        },
    ),
]


def build_actions(
    signals: SeoSignals, *, snapshot_id: uuid.UUID, page_id: uuid.UUID
) -> list[Action]:
    actions: list[Action] = []
    for flag, template in ACTION_TEMPLATES:
        if getattr(signals, flag):
            continue
        actions.append(
            Action(
                snapshot_id=snapshot_id,
                page_id=page_id,
                status="open",
                **{**template, "steps": list(template["steps"])},
            )
        )
    return actions
