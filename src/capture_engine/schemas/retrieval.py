"""Pydantic schemas for retrieval results and compressed context.

Defines SearchHit, RetrievedCandidate, CompressedChunk, SourceContext and AssembledContext.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

from .answer import Evidence

class SearchHit(BaseModel):
    id: str
    score: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

class RetrievedCandidate(BaseModel):
    source_id: str
    text: Optional[str] = None
    text_ref: Optional[str] = None
    similarity_score: float = Field(0.0, ge=0.0, le=1.0)
    provenance: Dict[str, Any] = Field(default_factory=dict)

class CompressedChunk(BaseModel):
    ordinal: int
    score: Optional[float] = None
    text: str
    source_id: str

    def render(self) -> str:
        score_label = f" [score={self.score:.2f}]" if self.score is not None else ""
        return f"[{self.ordinal}]{score_label}\n{self.text}"

class SourceContext(BaseModel):
    name: str
    text: str = ""
    chunks: List[CompressedChunk] = Field(default_factory=list)
    similarity_scores: List[float] = Field(default_factory=list)
    evidence: List[Evidence] = Field(default_factory=list)
    source_dates: List[str] = Field(default_factory=list)
    error: Optional[str] = None

class AssembledContext(BaseModel):
    text: str
    task_type: Optional[str] = None
    total_budget: int
    sources: List[SourceContext]

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()

    def source(self, name: str) -> Optional[SourceContext]:
        return next((s for s in self.sources if s.name == name), None)

    @property
    def similarity_scores(self) -> List[float]:
        return [score for s in self.sources for score in s.similarity_scores]

    @property
    def evidence(self) -> List[Evidence]:
        return [e for s in self.sources for e in s.evidence]

    @property
    def source_dates(self) -> List[str]:
        return [d for s in self.sources for d in s.source_dates]
