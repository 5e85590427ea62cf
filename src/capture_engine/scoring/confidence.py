"""Multi-factor confidence scoring for generated and library answers.

Five sub-scores (0-100 each) are combined with fixed weights into one
composite (0-100), which maps to a band through thresholds shared by every
caller, so "high" means the same thing for library hits and fresh answers.

The scorer is pure: no clock, network or storage access. The reference time
for source recency is an explicit argument.
"""

import re
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Union

from pydantic import BaseModel, Field

from ..schemas.answer import ConfidenceBand, ConfidenceBreakdown, Evidence

CONFIDENCE_WEIGHTS = {
    "context_relevance": 0.40,
    "source_recency": 0.25,
    "answer_coverage": 0.20,
    "source_authority": 0.10,
    "consistency": 0.05,
}

HIGH_THRESHOLD = 90
MEDIUM_THRESHOLD = 70

_HEDGING_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\bnot enough information\b",
        r"\bunable to determine\b",
        r"\bverify in the solicitation\b",
        r"\bcannot confirm\b",
        r"\bbest.?practice\b",
        r"\btypically\b",
        r"\bgenerally\b",
    )
]

_NUMBERED_ITEM_RE = re.compile(r"(?:^|\n)\s*(?:\d+[.)]\s|[a-z][.)]\s)", re.IGNORECASE)
_AND_RE = re.compile(r"\band\b", re.IGNORECASE)


class ConfidenceInput(BaseModel):
    llm_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    found: bool = False
    question_text: str = ""
    answer_text: str = ""
    sources: List[Evidence] = Field(default_factory=list)
    from_library: bool = False
    similarity_scores: List[float] = Field(default_factory=list)
    source_dates: Optional[List[Optional[Union[str, datetime]]]] = None


class ConfidenceResult(BaseModel):
    overall: int = Field(..., ge=0, le=100)
    breakdown: ConfidenceBreakdown
    band: ConfidenceBand

    @property
    def normalized(self) -> float:
        return self.overall / 100


def _clamp(value: float) -> int:
    return int(round(min(100.0, max(0.0, value))))


def confidence_band(overall: float) -> ConfidenceBand:
    if overall >= HIGH_THRESHOLD:
        return "high"
    if overall >= MEDIUM_THRESHOLD:
        return "medium"
    return "low"


def estimate_question_parts(question: str) -> int:
    if not question:
        return 1
    question_marks = question.count("?")
    if question_marks > 1:
        return question_marks
    numbered = len(_NUMBERED_ITEM_RE.findall(question))
    if numbered > 1:
        return numbered
    ands = len(_AND_RE.findall(question))
    if ands >= 2:
        return ands + 1
    semicolons = question.count(";")
    if semicolons >= 1:
        return semicolons + 1
    return 1


def context_relevance(inp: ConfidenceInput) -> int:
    """50% top hit, 30% mean similarity, 20% model confidence."""
    scores = inp.similarity_scores
    if not inp.found and not scores:
        return 20
    llm = inp.llm_confidence or 0.0
    top = max(scores) if scores else 0.0
    avg = sum(scores) / len(scores) if scores else 0.0
    return _clamp((top * 0.50 + avg * 0.30 + llm * 0.20) * 100)


def _parse_date(value: Union[str, datetime]) -> Optional[datetime]:
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def source_recency(inp: ConfidenceInput, as_of: datetime) -> int:
    dates = [_parse_date(d) for d in (inp.source_dates or []) if d]
    dates = [d for d in dates if d is not None]
    if not dates:
        # No date info available: assume moderate recency
        return 60

    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)

    scores = []
    for dt in dates:
        age_days = max(0.0, (as_of - dt).total_seconds() / 86_400)
        if age_days < 30:
            scores.append(100)
        elif age_days < 180:
            scores.append(80)
        elif age_days < 365:
            scores.append(60)
        else:
            scores.append(30)

    best = max(scores)
    avg = sum(scores) / len(scores)
    return _clamp(best * 0.6 + avg * 0.4)


def answer_coverage(inp: ConfidenceInput) -> int:
    answer = (inp.answer_text or "").strip()
    if not answer:
        return 0

    score = 50
    parts = estimate_question_parts(inp.question_text)
    length = len(answer)

    if parts <= 1:
        if length >= 50:
            score += 20
        elif length >= 20:
            score += 10
    else:
        expected = parts * 80
        if length >= expected:
            score += 25
        elif length >= expected * 0.5:
            score += 15
        else:
            score -= 10

    if inp.found:
        score += 15

    score -= 5 * sum(1 for p in _HEDGING_PATTERNS if p.search(answer))
    return _clamp(score)


def source_authority(inp: ConfidenceInput) -> int:
    # Content library answers are curated and pre-approved
    if inp.from_library:
        return 100
    if not inp.sources:
        return 50 if inp.found else 30

    score = 50
    count = len(inp.sources)
    if count >= 5:
        score += 20
    elif count >= 3:
        score += 15
    else:
        score += 10

    if any(s.document_id for s in inp.sources):
        score += 10
    if any(s.relevance is not None and s.relevance > 0.7 for s in inp.sources):
        score += 10
    return _clamp(score)


def consistency(inp: ConfidenceInput) -> int:
    llm = inp.llm_confidence or 0.0
    answer = inp.answer_text or ""
    score = 70

    if inp.found and llm < 0.4:
        score -= 20
    if answer and len(answer) < 30:
        score -= 10
    if inp.found and len(answer) > 100:
        score += 15
    return _clamp(score)


def score_confidence(inp: ConfidenceInput, as_of: datetime) -> ConfidenceResult:
    breakdown = ConfidenceBreakdown(
        context_relevance=context_relevance(inp),
        source_recency=source_recency(inp, as_of),
        answer_coverage=answer_coverage(inp),
        source_authority=source_authority(inp),
        consistency=consistency(inp),
    )
    overall = _clamp(sum(getattr(breakdown, name) * weight for name, weight in CONFIDENCE_WEIGHTS.items()))
    return ConfidenceResult(overall=overall, breakdown=breakdown, band=confidence_band(overall))


def clamp_similarity(score: Optional[float]) -> float:
    # Dot-product indexes and float drift can step slightly outside [0, 1]
    return max(0.0, min(1.0, score or 0.0))


def similarity_signal(scores: Sequence[Optional[float]]) -> List[float]:
    """Drop missing scores and clamp the rest into [0, 1]."""
    return [clamp_similarity(s) for s in scores if s is not None]
