"""
Pydantic schemas for LLM analysis output and API payloads.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.entities import CheckFrequency, Priority, Sentiment, SourceType, UrgencyLevel

DEFAULT_SUMMARY = "No summary available"
DEFAULT_RELEVANCE = 0.5


def _string_list(value: Any) -> List[str]:
    """Lower-case, strip and dedupe, keeping the model's order."""
    if not isinstance(value, list):
        return []
    seen: List[str] = []
    for entry in value:
        if isinstance(entry, bool) or not isinstance(entry, (str, int, float)):
            continue
        text = str(entry).strip().lower()
        if text and text not in seen:
            seen.append(text)
    return seen


class AnalysisResult(BaseModel):
    """
    Structured analysis of one item as returned by the model.
    Every field is coerced; validation never fails on a dict input.
    """
    model_config = ConfigDict(populate_by_name=True)

    summary: str = DEFAULT_SUMMARY
    categories: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    relevance_score: float = Field(DEFAULT_RELEVANCE, alias="relevanceScore")
    urgency_level: UrgencyLevel = Field(UrgencyLevel.NORMAL, alias="urgencyLevel")
    action_items: List[str] = Field(default_factory=list, alias="actionItems")
    sentiment: Optional[Sentiment] = None

    @field_validator("summary", mode="before")
    @classmethod
    def _summary(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return DEFAULT_SUMMARY
        return str(value).strip()

    @field_validator("categories", "tags", mode="before")
    @classmethod
    def _labels(cls, value: Any) -> List[str]:
        return _string_list(value)

    @field_validator("action_items", mode="before")
    @classmethod
    def _action_items(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [str(v).strip() for v in value if v is not None and str(v).strip()]

    @field_validator("relevance_score", mode="before")
    @classmethod
    def _relevance(cls, value: Any) -> float:
        if isinstance(value, bool):
            return DEFAULT_RELEVANCE
        try:
            score = float(value)
        except (TypeError, ValueError):
            return DEFAULT_RELEVANCE
        if score != score:  # NaN
            return DEFAULT_RELEVANCE
        return max(0.0, min(1.0, score))

    @field_validator("urgency_level", mode="before")
    @classmethod
    def _urgency(cls, value: Any) -> UrgencyLevel:
        try:
            return UrgencyLevel(str(value).strip().lower())
        except ValueError:
            return UrgencyLevel.NORMAL

    @field_validator("sentiment", mode="before")
    @classmethod
    def _sentiment(cls, value: Any) -> Optional[Sentiment]:
        if value is None:
            return None
        try:
            return Sentiment(str(value).strip().lower())
        except ValueError:
            return None

    @classmethod
    def fallback(cls, raw_text: str, limit: int = 500) -> "AnalysisResult":
        """Default analysis used when the model output has no usable JSON."""
        return cls(summary=raw_text[:limit])


class SourceCreate(BaseModel):
    type: SourceType
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    config: Dict[str, Any] = Field(default_factory=dict)
    priority: Priority = Priority.MEDIUM
    check_frequency: CheckFrequency = Field(CheckFrequency.DAILY, alias="checkFrequency")
    is_active: bool = Field(True, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


class SourceUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    priority: Optional[Priority] = None
    check_frequency: Optional[CheckFrequency] = Field(None, alias="checkFrequency")
    is_active: Optional[bool] = Field(None, alias="isActive")

    model_config = ConfigDict(populate_by_name=True)


class DigestUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
