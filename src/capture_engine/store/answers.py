"""Answer persistence.

There is exactly one current Answer per (project, question). Saving again
replaces the mutable fields of the existing record and keeps its id and
created_at; concurrent saves are last-write-wins.
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from ..errors import ConditionalWriteFailedError
from ..log import get_logger
from ..schemas.answer import Answer, ConfidenceBreakdown, ConfidenceBand, Evidence
from .db import DocumentStore, Exists, NotExists
from .keys import answer_key

logger = get_logger("answers")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class AnswerRepo:
    def __init__(self, documents: DocumentStore):
        self.documents = documents

    async def get(self, project_id: str, question_id: str) -> Optional[Answer]:
        item = await self.documents.get(answer_key(project_id, question_id))
        return Answer.model_validate(item) if item else None

    async def save(
        self,
        *,
        project_id: str,
        question_id: str,
        text: str,
        confidence: float,
        confidence_breakdown: ConfidenceBreakdown,
        confidence_band: ConfidenceBand,
        sources: List[Evidence],
        from_library: bool,
        found: bool,
        org_id: Optional[str] = None,
    ) -> Answer:
        key = answer_key(project_id, question_id)
        now = now_iso()
        mutable = {
            "text": text,
            "org_id": org_id,
            "confidence": confidence,
            "confidence_breakdown": confidence_breakdown.model_dump(),
            "confidence_band": confidence_band,
            "sources": [s.model_dump() for s in sources],
            "from_library": from_library,
            "found": found,
            "updated_at": now,
        }

        existing = await self.documents.get(key)
        if existing is None:
            answer = Answer(
                id=str(uuid.uuid4()),
                project_id=project_id,
                question_id=question_id,
                created_at=now,
                **{**mutable, "confidence_breakdown": confidence_breakdown, "sources": sources},
            )
            try:
                await self.documents.put(key, answer.model_dump(mode="json"), conditions=[NotExists()])
                logger.info(f"Created answer {answer.id} for question {question_id}")
                return answer
            except ConditionalWriteFailedError:
                # Someone created it between our read and write; update theirs instead
                logger.info(f"Answer for question {question_id} appeared concurrently; updating it")

        stored = await self.documents.update(key, set_values=mutable, conditions=[Exists()])
        return Answer.model_validate(stored)
