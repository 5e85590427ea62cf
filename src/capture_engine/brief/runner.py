"""Brief section runner.

run_section() is the unit of work a workflow transport triggers once per
(brief, section). It skips runs whose inputs are unchanged, then marks the
section IN_PROGRESS, generates the payload from the solicitation text and
company context, and records COMPLETE or FAILED. Errors are recorded on the
section and re-raised so the transport can decide whether to retry.
"""

import asyncio
import json
from statistics import mean
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ValidationError

from ..config import get_settings
from ..context.assembly import ContextAssembler
from ..context.compress import truncate_text
from ..context.sources import ContextRequest
from ..errors import InvalidRequestError, MissingInputError
from ..llm.client import LLMClient
from ..llm.prompts import load_prompt, render
from ..log import get_logger
from ..mlops.tracing import tracer
from ..schemas.brief import (
    SECTION_SCHEMAS,
    Brief,
    BriefSectionName,
    ContactsSection,
    ScoringSection,
    SectionJob,
)
from ..store.blobs import BlobStore
from .repo import BriefRepo
from .state import build_section_input_hash, should_skip

logger = get_logger("brief")

MIN_SOLICITATION_CHARS = 20
CONTEXT_QUERY_CHARS = 2_000

RECOMMENDED_CONTACT_ROLES = (
    "CONTRACTING_OFFICER",
    "CONTRACT_SPECIALIST",
    "TECHNICAL_POC",
    "SMALL_BUSINESS_SPECIALIST",
)

SCORING_PREREQUISITES = (
    BriefSectionName.SUMMARY,
    BriefSectionName.DEADLINES,
    BriefSectionName.REQUIREMENTS,
    BriefSectionName.CONTACTS,
    BriefSectionName.RISKS,
)

# Budget task type used for company context; None means the section reads only the solicitation
SECTION_TASK_TYPES: Dict[BriefSectionName, Optional[str]] = {
    BriefSectionName.SUMMARY: "EXECUTIVE_SUMMARY",
    BriefSectionName.DEADLINES: None,
    BriefSectionName.REQUIREMENTS: "UNDERSTANDING_OF_REQUIREMENTS",
    BriefSectionName.CONTACTS: None,
    BriefSectionName.RISKS: "RISK_MANAGEMENT",
    BriefSectionName.PAST_PERFORMANCE: "PAST_PERFORMANCE",
    BriefSectionName.SCORING: "EXECUTIVE_SUMMARY",
}

SECTION_MAX_TOKENS: Dict[BriefSectionName, int] = {
    BriefSectionName.SUMMARY: 2000,
    BriefSectionName.DEADLINES: 2000,
    BriefSectionName.REQUIREMENTS: 4000,
    BriefSectionName.CONTACTS: 1500,
    BriefSectionName.RISKS: 3000,
    BriefSectionName.PAST_PERFORMANCE: 3000,
    BriefSectionName.SCORING: 3000,
}

DECISION_BY_RECOMMENDATION = {"GO": "GO", "NO_GO": "NO_GO"}


def merge_documents(texts: List[str]) -> str:
    texts = [t.strip() for t in texts if t and t.strip()]
    if len(texts) <= 1:
        return texts[0] if texts else ""
    return "".join(
        f"\n\n=== DOCUMENT {i} of {len(texts)} ===\n\n{text}" for i, text in enumerate(texts, start=1)
    ).strip()


def missing_contact_roles(contacts: ContactsSection) -> List[str]:
    present = {(c.role or "").upper() for c in contacts.contacts}
    return [role for role in RECOMMENDED_CONTACT_ROLES if role not in present]


def composite_score(scoring: ScoringSection) -> float:
    return round(mean(c.score for c in scoring.criteria), 1)


class SectionRunner:
    def __init__(
        self,
        briefs: BriefRepo,
        llm: LLMClient,
        blobs: BlobStore,
        context: Optional[ContextAssembler] = None,
        bucket: Optional[str] = None,
        model: Optional[str] = None,
    ):
        settings = get_settings()
        self.briefs = briefs
        self.llm = llm
        self.blobs = blobs
        self.context = context
        self.bucket = bucket or settings.DOCUMENTS_BUCKET
        self.model = model or settings.MODEL_BRIEF
        self.max_solicitation_chars = settings.BRIEF_MAX_SOLICITATION_CHARS

    async def load_solicitation(self, brief: Brief) -> str:
        keys = list(dict.fromkeys(k for k in brief.source_keys if k))
        if not keys:
            raise MissingInputError(f"Brief {brief.id} has no source documents")

        texts = await asyncio.gather(*(self.blobs.load_text(self.bucket, key) for key in keys))
        text = merge_documents(list(texts))
        if len(text) < MIN_SOLICITATION_CHARS:
            raise MissingInputError(f"Solicitation text for brief {brief.id} is empty")

        if len(text) > self.max_solicitation_chars:
            logger.info(f"[{brief.id}] Solicitation truncated {len(text)} -> {self.max_solicitation_chars} chars")
            text = truncate_text(text, self.max_solicitation_chars)
        return text

    async def _company_context(
        self, brief: Brief, section: BriefSectionName, solicitation: str, top_k: Optional[int] = None
    ) -> str:
        task_type = SECTION_TASK_TYPES[section]
        if self.context is None or task_type is None:
            return ""
        assembled = await self.context.gather(ContextRequest(
            org_id=brief.org_id,
            project_id=brief.project_id,
            opportunity_id=brief.opportunity_id,
            query_text=solicitation[:CONTEXT_QUERY_CHARS],
            task_type=task_type,
            top_k=top_k,
        ))
        return assembled.text

    async def _generate(
        self, brief: Brief, section: BriefSectionName, top_k: Optional[int] = None
    ) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
        values = {}
        if section == BriefSectionName.SCORING:
            missing = [s.value for s in SCORING_PREREQUISITES if brief.section_data(s) is None]
            if missing:
                raise MissingInputError(f"Scoring needs completed sections: {', '.join(missing)}")
            values["sections"] = json.dumps(
                {s.value: brief.section_data(s) for s in SCORING_PREREQUISITES}, indent=1, default=str
            )

        solicitation = await self.load_solicitation(brief)
        values["solicitation"] = solicitation
        values["context"] = await self._company_context(brief, section, solicitation, top_k) or "(none)"

        prompt = load_prompt(f"brief_{section.value}")
        payload: BaseModel = await self.llm.run_json(
            self.model,
            prompt["system"],
            render(prompt["user"], **values),
            SECTION_SCHEMAS[section],
            max_tokens=SECTION_MAX_TOKENS[section],
            temperature=0,
        )
        return self._finalize(brief, section, payload)

    def _finalize(
        self, brief: Brief, section: BriefSectionName, payload: BaseModel
    ) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
        if isinstance(payload, ContactsSection):
            payload.missing_recommended_roles = missing_contact_roles(payload)
            return payload.model_dump(mode="json"), None

        if isinstance(payload, ScoringSection):
            payload.composite_score = composite_score(payload)
            if payload.decision is None:
                payload.decision = DECISION_BY_RECOMMENDATION.get(payload.recommendation, "CONDITIONAL_GO")
            patch = {
                "composite_score": payload.composite_score,
                "decision": payload.decision,
                "recommendation": payload.recommendation,
                "confidence": payload.confidence,
            }
            return payload.model_dump(mode="json"), patch

        return payload.model_dump(mode="json"), None

    async def run_section(self, job: Union[SectionJob, Mapping[str, Any]]) -> Brief:
        try:
            job = job if isinstance(job, SectionJob) else SectionJob.model_validate(job)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid section job: {e}") from e

        brief = await self.briefs.get_brief(job.brief_id)
        if brief.org_id != job.org_id:
            raise InvalidRequestError(f"Brief {brief.id} does not belong to org {job.org_id}")

        section = job.section
        input_hash = job.input_hash or build_section_input_hash(
            brief.id, section, brief.opportunity_id, brief.source_keys
        )
        if should_skip(brief.section(section), input_hash):
            logger.info(f"[{brief.id}] {section.value} unchanged since last run; skipping")
            tracer.trace_section(brief.id, section.value, "skipped")
            return brief

        await self.briefs.mark_in_progress(brief.id, section, input_hash)
        with tracer.span("brief.section", span_type="CHAIN", attributes={"brief_id": brief.id, "section": section.value}):
            try:
                data, patch = await self._generate(brief, section, job.top_k)
                completed = await self.briefs.mark_complete(brief.id, section, data, top_level_patch=patch)
            except Exception as e:
                logger.error(f"[{brief.id}] {section.value} failed: {e}")
                tracer.trace_section(brief.id, section.value, "failed")
                await self.briefs.mark_failed(brief.id, section, e)
                raise
            tracer.trace_section(brief.id, section.value, "complete")
        return completed

    async def run_brief(self, brief_id: str) -> Brief:
        """Run the six extraction sections concurrently, then scoring. Failures stay recorded on their sections."""
        brief = await self.briefs.get_brief(brief_id)
        extraction = [s for s in BriefSectionName if s != BriefSectionName.SCORING]

        results = await asyncio.gather(
            *(self.run_section(SectionJob(org_id=brief.org_id, brief_id=brief.id, section=s)) for s in extraction),
            return_exceptions=True,
        )
        for section, result in zip(extraction, results):
            if isinstance(result, BaseException):
                logger.error(f"[{brief.id}] {section.value} did not complete: {result}")

        try:
            await self.run_section(SectionJob(org_id=brief.org_id, brief_id=brief.id, section=BriefSectionName.SCORING))
        except Exception as e:
            logger.error(f"[{brief.id}] scoring did not complete: {e}")
        return await self.briefs.get_brief(brief.id)
