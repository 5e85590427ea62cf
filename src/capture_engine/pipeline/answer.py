"""Answer generation pipeline.

    request -> validate -> embed question -> content-library short-circuit
            -> assemble context -> model -> confidence -> persist Answer

Nothing is persisted when the knowledge base finds no relevant chunk, or when
no source contributes any context.
"""

from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from ..config import get_settings
from ..context.assembly import ContextAssembler
from ..context.sources import ContextRequest
from ..errors import InvalidRequestError, NoMatchingContextError
from ..library.matcher import ContentLibraryMatcher
from ..llm.client import LLMClient
from ..llm.prompts import load_prompt, render
from ..log import get_logger
from ..mlops.tracing import tracer
from ..retrieval.index import Embedder, build_search_query
from ..schemas.answer import Answer, AnswerRequest, ModelAnswer
from ..scoring.confidence import ConfidenceInput, score_confidence, similarity_signal
from ..store.answers import AnswerRepo

logger = get_logger("answer")


def validate_request(request: Union[AnswerRequest, Mapping[str, Any]]) -> AnswerRequest:
    try:
        req = request if isinstance(request, AnswerRequest) else AnswerRequest.model_validate(request)
    except ValidationError as e:
        raise InvalidRequestError(f"Invalid answer request: {e}") from e
    if not (req.question_text or "").strip():
        raise InvalidRequestError(f"Question {req.question_id} has no text")
    return req


class AnswerPipeline:
    def __init__(
        self,
        embedder: Embedder,
        assembler: ContextAssembler,
        llm: LLMClient,
        answers: AnswerRepo,
        matcher: Optional[ContentLibraryMatcher] = None,
        model: Optional[str] = None,
    ):
        self.embedder = embedder
        self.assembler = assembler
        self.llm = llm
        self.answers = answers
        self.matcher = matcher
        self.model = model or get_settings().MODEL_ANSWER

    async def generate_answer(self, request: Union[AnswerRequest, Mapping[str, Any]]) -> Answer:
        req = validate_request(request)
        question = req.question_text.strip()
        logger.info(f"Answering question {req.question_id} (project={req.project_id}, task_type={req.task_type or 'default'})")

        with tracer.span("answer.generate", span_type="CHAIN", attributes={"question_id": req.question_id}):
            vector = await self.embedder.embed(build_search_query(question))

            if self.matcher is not None:
                reused = await self.matcher.try_match(
                    org_id=req.org_id,
                    project_id=req.project_id,
                    question_id=req.question_id,
                    question=question,
                    query_vector=vector,
                )
                if reused is not None:
                    return reused

            context = await self.assembler.gather(ContextRequest(
                org_id=req.org_id,
                project_id=req.project_id,
                opportunity_id=req.opportunity_id,
                query_text=question,
                task_type=req.task_type,
                query_vector=vector,
            ))
            kb = context.source("knowledge_base")
            # A KB outage falls back to the surviving sources; a KB that answered with
            # nothing relevant means there is nothing to ground an answer on
            kb_found_nothing = kb is not None and kb.error is None and not kb.chunks
            if context.is_empty or kb_found_nothing:
                logger.warning(f"No matching context for question {req.question_id}")
                raise NoMatchingContextError()

            prompt = load_prompt("answer")
            model_answer = await self.llm.run_json(
                self.model,
                prompt["system"],
                render(prompt["user"], context=context.text, question=question),
                ModelAnswer,
            )

            evidence = kb.evidence if kb else []
            result = score_confidence(
                ConfidenceInput(
                    llm_confidence=model_answer.confidence,
                    found=model_answer.found,
                    question_text=question,
                    answer_text=model_answer.answer,
                    sources=evidence,
                    from_library=False,
                    similarity_scores=similarity_signal(kb.similarity_scores if kb else []),
                    source_dates=list(kb.source_dates) if kb else None,
                ),
                as_of=datetime.now(timezone.utc),
            )

        answer = await self.answers.save(
            project_id=req.project_id,
            question_id=req.question_id,
            org_id=req.org_id,
            text=model_answer.answer,
            confidence=result.normalized,
            confidence_breakdown=result.breakdown,
            confidence_band=result.band,
            sources=evidence,
            from_library=False,
            found=model_answer.found,
        )
        logger.info(
            f"Answer saved for question {req.question_id}: confidence={result.overall} "
            f"({result.band}), {len(evidence)} sources"
        )
        return answer
