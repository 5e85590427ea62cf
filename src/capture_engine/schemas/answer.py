"""Pydantic schemas for answers, evidence and confidence.

Defines Evidence, ConfidenceBreakdown, Answer, ModelAnswer, ContentLibraryItem,
PastProject and the AnswerRequest accepted by the answer pipeline.
"""

from __future__ import annotations

from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator

ConfidenceBand = Literal["high", "medium", "low"]

class Evidence(BaseModel):
    id: str
    document_id: Optional[str] = None
    file_name: Optional[str] = None
    chunk_ref: Optional[str] = None
    text_content: str = ""
    relevance: Optional[float] = None

class ConfidenceBreakdown(BaseModel):
    context_relevance: int = Field(..., ge=0, le=100)
    source_recency: int = Field(..., ge=0, le=100)
    answer_coverage: int = Field(..., ge=0, le=100)
    source_authority: int = Field(..., ge=0, le=100)
    consistency: int = Field(..., ge=0, le=100)

class Answer(BaseModel):
    id: str
    project_id: str
    question_id: str
    org_id: Optional[str] = None
    text: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    confidence_breakdown: ConfidenceBreakdown
    confidence_band: ConfidenceBand
    sources: List[Evidence] = Field(default_factory=list)
    from_library: bool = False
    found: bool = False
    created_at: str
    updated_at: str

class ModelAnswer(BaseModel):
    """What the answer prompt asks the model to return."""
    answer: str = ""
    confidence: Optional[float] = None
    found: bool = False

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v: Optional[float]) -> Optional[float]:
        if v is None:
            return None
        # Some models answer on a 0-100 scale
        if v > 1:
            v = v / 100
        return max(0.0, min(1.0, v))

class LibraryVerdict(BaseModel):
    match: bool = False
    index: int = -1

class ContentLibraryItem(BaseModel):
    id: str
    org_id: str
    kb_id: Optional[str] = None
    question: str
    answer: str
    updated_at: Optional[str] = None
    usage_count: int = 0
    last_used_at: Optional[str] = None

class PastProject(BaseModel):
    id: str
    org_id: str
    title: str
    client: Optional[str] = None
    domain: Optional[str] = None
    description: Optional[str] = None
    technologies: List[str] = Field(default_factory=list)
    achievements: List[str] = Field(default_factory=list)
    value: Optional[float] = None
    performance_rating: Optional[float] = None
    archived: bool = False

class AnswerRequest(BaseModel):
    org_id: str = Field(..., min_length=1)
    project_id: str = Field(..., min_length=1)
    question_id: str = Field(..., min_length=1)
    question_text: Optional[str] = None
    opportunity_id: Optional[str] = None
    task_type: Optional[str] = None
