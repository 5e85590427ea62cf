"""Relevance filtering and lightweight compression of retrieved text.

No LLM call is involved: candidates under a per-source similarity threshold
are dropped, and the survivors are reduced to their informative sentences.
"""

import re
from typing import Dict, Iterable, List

from ..config import get_settings
from ..schemas.retrieval import CompressedChunk, RetrievedCandidate

TRUNCATION_MARKER = "\n\n[TRUNCATED]"

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_NUMERIC_RE = re.compile(r"^\d+$")
_CAPS_HEADER_RE = re.compile(r"^[A-Z\s\-_]{10,}$")
_NAVIGATION_RE = re.compile(r"^(page|section|table|figure)\s+\d", re.IGNORECASE)

MIN_SENTENCE_CHARS = 20


def min_scores() -> Dict[str, float]:
    """Per-source minimum similarity. Tuned for the current embedding model."""
    settings = get_settings()
    return {
        "knowledge_base": settings.KB_MIN_SCORE,
        "past_performance": settings.PAST_PERF_MIN_SCORE,
        "content_library": settings.CONTENT_LIB_MIN_SCORE,
    }


def truncate_text(text: str, max_chars: int) -> str:
    """Hard cap; the result is never longer than max_chars."""
    if not text or max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    if max_chars <= len(TRUNCATION_MARKER):
        return text[:max_chars]
    return text[: max_chars - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


def is_boilerplate(sentence: str) -> bool:
    if len(sentence) < MIN_SENTENCE_CHARS:
        return True
    if _NUMERIC_RE.match(sentence):
        return True
    if _CAPS_HEADER_RE.match(sentence):
        return True
    if _NAVIGATION_RE.match(sentence):
        return True
    return False


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]


def compress_chunk(text: str, max_chars: int) -> str:
    """
    Keep the informative sentences of `text`, in order, while they fit in `max_chars`.
    Falls back to a hard truncation when no sentence survives, so non-empty
    input with a positive cap never comes back empty.
    """
    if not text or max_chars <= 0:
        return ""

    result = ""
    for sentence in split_sentences(text):
        if is_boilerplate(sentence):
            continue
        if len(result) + len(sentence) + 1 > max_chars:
            break
        result = f"{result} {sentence}" if result else sentence

    return result or text[:max_chars]


def filter_by_score(candidates: Iterable[RetrievedCandidate], min_score: float) -> List[RetrievedCandidate]:
    return [c for c in candidates if c.similarity_score >= min_score]


def compress_candidates(
    candidates: Iterable[RetrievedCandidate],
    min_score: float,
    max_chars_per_chunk: int,
) -> List[CompressedChunk]:
    """
    Score-filter then compress each candidate. Retrieval order is kept and
    ordinals are assigned over the retained candidates, starting at 1.
    Candidates without loaded text are skipped.
    """
    chunks: List[CompressedChunk] = []
    for candidate in filter_by_score(candidates, min_score):
        compressed = compress_chunk(candidate.text or "", max_chars_per_chunk)
        if not compressed.strip():
            continue
        chunks.append(CompressedChunk(
            ordinal=len(chunks) + 1,
            score=candidate.similarity_score,
            text=compressed,
            source_id=candidate.source_id,
        ))
    return chunks


def per_chunk_allowance(budget: int, candidate_count: int, floor: int) -> int:
    """Even split of a source budget across its candidates, never below `floor`."""
    return max(budget // max(candidate_count, 1), floor)


def render_chunks(chunks: Iterable[CompressedChunk], budget: int) -> str:
    return truncate_text("\n\n".join(c.render() for c in chunks), budget)
