"""Pydantic records for payloads returned by the index service.

The index service is loosely typed and evolves independently, so these models
ignore unknown keys and accept the handful of aliases seen in the wild.
"""

from __future__ import annotations

from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

__all__ = [
    "GoldenExampleRecord",
    "ImpactGraphRecord",
    "IndexStatsRecord",
    "MemoryRecord",
    "PayloadModel",
    "ProfilePreferenceRecord",
    "SearchHitRecord",
]


class PayloadModel(BaseModel):
    """Base model for remote payloads; unknown keys are dropped."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class IndexStatsRecord(PayloadModel):
    num_docs: int = 0
    last_updated_epoch_ms: int = 0

    @field_validator("num_docs", "last_updated_epoch_ms", mode="before")
    @classmethod
    def _none_to_zero(cls, value: Any) -> Any:
        return 0 if value is None else value


class SearchHitRecord(PayloadModel):
    doc_id: Optional[str] = None
    path: Optional[str] = Field(default=None, validation_alias=AliasChoices("path", "rel_path"))
    score: Optional[float] = None
    summary: Optional[str] = None

    @field_validator("doc_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return None if value is None else str(value)


class ImpactGraphRecord(PayloadModel):
    inbound: List[str] = Field(default_factory=list)
    outbound: List[str] = Field(default_factory=list)


class MemoryRecord(PayloadModel):
    content: str = Field(validation_alias=AliasChoices("content", "text"))
    score: float = 0.0
    created_at: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt", "timestamp")
    )


class ProfilePreferenceRecord(PayloadModel):
    content: str = Field(validation_alias=AliasChoices("content", "text"))
    category: Optional[str] = None


class GoldenExampleRecord(PayloadModel):
    intent: str
    plan: Optional[str] = None
    patch: Optional[str] = None
    files: List[str] = Field(default_factory=list)
    review: Optional[str] = None
    qa: Optional[str] = None
