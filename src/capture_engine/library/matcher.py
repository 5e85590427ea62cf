"""Content-library short-circuit.

Before generating, ask the model whether one of the nearest pre-approved Q&A
pairs already answers the question. The model may only pick an index or
decline. On a match the approved answer is reused verbatim, scored and
persisted; anything else (no candidates, no match, any error) falls through
to full generation.
"""

import asyncio
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Set, Tuple

from ..config import get_settings
from ..log import get_logger
from ..llm.client import LLMClient
from ..llm.prompts import load_prompt, render
from ..mlops.tracing import tracer
from ..retrieval.index import CONTENT_LIBRARY, VectorIndex
from ..schemas.answer import Answer, ContentLibraryItem, LibraryVerdict
from ..schemas.retrieval import SearchHit
from ..scoring.confidence import ConfidenceInput, score_confidence
from ..store.answers import AnswerRepo, now_iso
from ..store.db import DocumentStore, Exists

logger = get_logger("library")

LIBRARY_TOP_N = 10
FALLBACK_MATCH_SCORE = 0.8

# Keeps fire-and-forget telemetry tasks alive until they finish
_background: Set[asyncio.Task] = set()


def format_library_listing(items: Sequence[ContentLibraryItem]) -> str:
    return "\n".join(
        f"[CL_ITEM_{i}]\nQuestion: {item.question}\nAnswer: {item.answer}\n---"
        for i, item in enumerate(items)
    )


class ContentLibraryMatcher:
    def __init__(
        self,
        index: VectorIndex,
        documents: DocumentStore,
        llm: LLMClient,
        answers: AnswerRepo,
        model: Optional[str] = None,
    ):
        self.index = index
        self.documents = documents
        self.llm = llm
        self.answers = answers
        self.model = model or get_settings().MODEL_ANSWER

    async def _load_items(self, hits: Sequence[SearchHit]) -> List[Tuple[ContentLibraryItem, SearchHit]]:
        loaded = []
        for hit in hits:
            key = hit.metadata.get("item_key")
            if not key:
                continue
            item = await self.documents.get(key)
            if item:
                loaded.append((ContentLibraryItem.model_validate(item), hit))
        return loaded

    async def _evaluate(self, question: str, items: Sequence[ContentLibraryItem]) -> LibraryVerdict:
        prompt = load_prompt("content_library_match")
        user = render(prompt["user"], question=question, listing=format_library_listing(items))
        return await self.llm.run_json(self.model, prompt["system"], user, LibraryVerdict, max_tokens=512, temperature=0)

    async def _record_usage(self, item: ContentLibraryItem, item_key: str, project_id: str):
        now = now_iso()
        await self.documents.update(
            item_key,
            set_values={"usage_count": item.usage_count + 1, "last_used_at": now, "last_used_project_id": project_id},
            conditions=[Exists()],
        )
        logger.info(f"Recorded content library usage for item {item.id}")

    def track_usage(self, item: ContentLibraryItem, item_key: str, project_id: str):
        """Fire-and-forget; never blocks or fails the answer path."""
        task = asyncio.create_task(self._record_usage(item, item_key, project_id))
        _background.add(task)

        def _done(t: asyncio.Task):
            _background.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.warning(f"Content library usage tracking failed: {t.exception()}")

        task.add_done_callback(_done)

    async def try_match(
        self,
        *,
        org_id: str,
        project_id: str,
        question_id: str,
        question: str,
        query_vector: Sequence[float],
    ) -> Optional[Answer]:
        with tracer.span("library.match", span_type="RETRIEVER", attributes={"org_id": org_id}):
            try:
                hits = await self.index.search(org_id, query_vector, LIBRARY_TOP_N, CONTENT_LIBRARY)
                logger.info(
                    f"[CL-Search] {len(hits)} content library hits, scores: "
                    f"[{', '.join(f'{(h.score or 0):.3f}' for h in hits)}]"
                )
                if not hits:
                    return None

                loaded = await self._load_items(hits)
                if not loaded:
                    return None

                verdict = await self._evaluate(question, [item for item, _ in loaded])
                logger.info(f"[CL-Eval] match={verdict.match}, index={verdict.index}")
                if not verdict.match or not 0 <= verdict.index < len(loaded):
                    return None

                item, hit = loaded[verdict.index]
                matched_score = hit.score or FALLBACK_MATCH_SCORE
                result = score_confidence(
                    ConfidenceInput(
                        llm_confidence=min(1.0, matched_score),
                        found=True,
                        question_text=question,
                        answer_text=item.answer,
                        sources=[],
                        from_library=True,
                        similarity_scores=[matched_score],
                        source_dates=[item.updated_at] if item.updated_at else None,
                    ),
                    as_of=datetime.now(timezone.utc),
                )
            except Exception as e:
                logger.warning(f"Content library evaluation failed, falling through to generation: {e}")
                return None

        answer = await self.answers.save(
            project_id=project_id,
            question_id=question_id,
            org_id=org_id,
            text=item.answer,
            confidence=result.normalized,
            confidence_breakdown=result.breakdown,
            confidence_band=result.band,
            sources=[],
            from_library=True,
            found=True,
        )
        logger.info(f"[CL-Match] Reused library item {item.id} (score={matched_score:.3f}, band={result.band})")
        self.track_usage(item, hit.metadata["item_key"], project_id)
        return answer
