"""Pydantic v2 schemas for language-model distillation output.

The model is asked for one JSON object; it is validated here before any
UniversalKnowledge is built, so a missing field fails the article instead
of producing a partial record.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class GuidelinePayload(BaseModel):
    """One if/then/reason triple as emitted by the model."""

    model_config = ConfigDict(populate_by_name=True)

    if_: str = Field(..., alias="if", description="Situation that triggers the rule")
    then: str = Field(..., description="Action to take")
    reason: str = Field(..., description="Why the action works")


class ContextPayload(BaseModel):
    """A practice change as emitted by the model."""

    model_config = ConfigDict(populate_by_name=True)

    before_period: str = Field(..., alias="beforePeriod")
    old_practice: str = Field(..., alias="oldPractice")
    new_practice: str = Field(..., alias="newPractice")


class ExtractionPayload(BaseModel):
    """The full distillation contract.

    Attributes:
        title: Short knowledge title
        concept: One-paragraph core idea
        guidelines: Actionable if/then/reason rules
        tone_and_phrasing: Recommended wording
        context: How practice changed over time
        suggested_category: Category hint (instagram, seo, ...)
        suggested_keyword: Slug hint for the knowledge id
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str
    concept: str
    guidelines: list[GuidelinePayload]
    tone_and_phrasing: list[str] = Field(..., alias="toneAndPhrasing")
    context: list[ContextPayload]
    suggested_category: str = Field(..., alias="suggestedCategory")
    suggested_keyword: str = Field(..., alias="suggestedKeyword")

    @field_validator("title", "concept")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Title and concept carry the record; they cannot be blank."""
        if not v or not v.strip():
            raise ValueError("field cannot be empty")
        return v.strip()
