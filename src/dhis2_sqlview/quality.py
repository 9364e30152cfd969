"""Metadata quality scoring.

A record earns one point per passing check: description, code, active and
recently updated.  ``QUALITY_LABELS`` is the only score-to-label table; the
label, colour and recommendation helpers all read from it.
"""

from __future__ import annotations

import datetime
from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from dhis2_sqlview.models import MetadataKind, normalize_kind

RECENCY_WINDOW = datetime.timedelta(days=365)

QUALITY_LABELS: tuple[tuple[str, str], ...] = (
    ("Poor", "red"),
    ("Fair", "orange"),
    ("Good", "yellow"),
    ("Very Good", "green"),
    ("Excellent", "blue"),
)

MAX_SCORE = len(QUALITY_LABELS) - 1

_INACTIVE_FLAGS = ("disabled", "deprecated", "archived")


class QualityCheck(StrEnum):
    HAS_DESCRIPTION = "hasDescription"
    HAS_CODE = "hasCode"
    IS_ACTIVE = "isActive"
    IS_RECENT = "isRecent"


_RECOMMENDATIONS: dict[QualityCheck, str] = {
    QualityCheck.HAS_DESCRIPTION: "Add a meaningful description",
    QualityCheck.HAS_CODE: "Add a code for better identification",
    QualityCheck.IS_ACTIVE: "Check whether this metadata is still in use",
    QualityCheck.IS_RECENT: "Review and update the metadata to reflect current requirements",
}


def _clamp(score: int) -> int:
    return max(0, min(MAX_SCORE, score))


def quality_label(score: int) -> str:
    """Map a 0-4 score to Poor / Fair / Good / Very Good / Excellent."""
    return QUALITY_LABELS[_clamp(score)][0]


def quality_color(score: int) -> str:
    """Badge colour for a 0-4 score."""
    return QUALITY_LABELS[_clamp(score)][1]


class QualityAssessment(BaseModel):
    """Score and the checks behind it for one metadata record."""

    score: int = Field(ge=0, le=MAX_SCORE)
    contributing_checks: dict[str, bool]
    kind: MetadataKind | None = None

    @property
    def label(self) -> str:
        return quality_label(self.score)

    @property
    def color(self) -> str:
        return quality_color(self.score)


def _text(record: Mapping[str, Any], field: str) -> bool:
    value = record.get(field)
    return isinstance(value, str) and value.strip() != ""


def _is_active(record: Mapping[str, Any]) -> bool:
    if any(record.get(flag) is True for flag in _INACTIVE_FLAGS):
        return False
    return record.get("active") is not False


def _parse_timestamp(value: Any) -> datetime.datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.UTC)
    return parsed


def _is_recent(record: Mapping[str, Any], now: datetime.datetime, window: datetime.timedelta) -> bool:
    updated = _parse_timestamp(record.get("lastUpdated"))
    return updated is not None and updated >= now - window


def score(
    record: Mapping[str, Any],
    kind: MetadataKind | str | None = None,
    now: datetime.datetime | None = None,
    window: datetime.timedelta = RECENCY_WINDOW,
) -> QualityAssessment:
    """Score one metadata record.

    Args:
        record: Metadata object as returned by the DHIS2 API.
        kind: Metadata type the record belongs to.
        now: Evaluation time (defaults to the current UTC time).
        window: How recent ``lastUpdated`` must be.

    Returns:
        QualityAssessment with a 0-4 score.
    """
    now = now or datetime.datetime.now(tz=datetime.UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=datetime.UTC)
    checks = {
        QualityCheck.HAS_DESCRIPTION.value: _text(record, "description"),
        QualityCheck.HAS_CODE.value: _text(record, "code"),
        QualityCheck.IS_ACTIVE.value: _is_active(record),
        QualityCheck.IS_RECENT.value: _is_recent(record, now, window),
    }
    return QualityAssessment(
        score=_clamp(sum(checks.values())),
        contributing_checks=checks,
        kind=normalize_kind(kind) if kind is not None else None,
    )


def recommendations(assessment: QualityAssessment) -> list[str]:
    """Improvement hints for every failed check."""
    return [
        _RECOMMENDATIONS[check]
        for check in QualityCheck
        if not assessment.contributing_checks.get(check.value, False)
    ]
