from __future__ import annotations

from collections.abc import Mapping
from typing import Any

BASE_SCORE = 50
EASY_APPLY_BOOST = 20
PROMOTED_BOOST = 10
ACTIVE_REVIEW_BOOST = 15
VERIFIED_PENALTY = 20
RECENT_POST_BOOST = 25
REMOTE_BOOST = 10
MIN_SCORE = 0
MAX_SCORE = 100


def calculate_priority_score(job: Any) -> int:
    """Heuristic 0-100 score; higher scores are promoted first.

    Accepts a mapping or any object exposing the discovery attributes.
    All adjustments are additive and clamped once at the end.
    """
    score = BASE_SCORE

    if _flag(job, "is_easy_apply"):
        score += EASY_APPLY_BOOST
    if _flag(job, "is_promoted"):
        score += PROMOTED_BOOST

    insight = _text(job, "insight")
    if insight and "actively reviewing" in insight.lower():
        score += ACTIVE_REVIEW_BOOST

    if _flag(job, "has_verified"):
        score -= VERIFIED_PENALTY

    posted_date = _text(job, "posted_date")
    if posted_date:
        lowered = posted_date.lower()
        if "hour" in lowered or "today" in lowered:
            score += RECENT_POST_BOOST

    work_type = _text(job, "work_type")
    if work_type and work_type.strip().lower() == "remote":
        score += REMOTE_BOOST

    return max(MIN_SCORE, min(MAX_SCORE, score))


def _get(job: Any, name: str) -> Any:
    if isinstance(job, Mapping):
        return job.get(name)
    return getattr(job, name, None)


def _flag(job: Any, name: str) -> bool:
    return _get(job, name) is True


def _text(job: Any, name: str) -> str | None:
    value = _get(job, name)
    if isinstance(value, str):
        return value
    return None
