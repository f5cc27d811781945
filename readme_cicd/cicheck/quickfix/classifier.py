"""Classify recommendations as Quick Fix or Guided Fix."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from cicheck.analyzer.models import ImplementationType, Recommendation, RecommendationCategory


class FixClassification(str, Enum):
    QUICK = "quick"
    GUIDED = "guided"


class TextEdit(BaseModel):
    """Replace the text between two 1-based positions; equal positions insert."""

    model_config = ConfigDict(frozen=True)

    start_line: int
    start_column: int
    end_line: int
    end_column: int
    new_text: str


class QuickFix(BaseModel):
    """A recommendation reduced to one mechanical text edit."""

    model_config = ConfigDict(frozen=True)

    id: str
    recommendation_id: str
    title: str
    description: str = ""
    kind: FixClassification = FixClassification.QUICK
    edit: TextEdit
    requires_confirmation: bool = False


# Implementation types that can be applied as a single text edit
QUICK_FIX_TYPES = {
    ImplementationType.step_addition,
    ImplementationType.config_change,
}

# Changes the user must confirm: moving a job to another OS can break it
CONFIRM_CATEGORIES = {
    RecommendationCategory.resource,
}


def requires_confirmation(recommendation: Recommendation) -> bool:
    return recommendation.category in CONFIRM_CATEGORIES


def classify(recommendation: Recommendation) -> FixClassification:
    """Quick when the change is mechanical, guided when it needs judgment."""
    if recommendation.implementation.type not in QUICK_FIX_TYPES:
        return FixClassification.GUIDED
    if not recommendation.implementation.changes:
        return FixClassification.GUIDED
    return FixClassification.QUICK
