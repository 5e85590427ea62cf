"""Context source loaders.

Each loader reads one knowledge source for a request and renders it into at
most `budget` characters. Loaders are side-effect free and may raise; the
assembler turns a raised error into an empty contribution.
"""

import asyncio
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel

from ..config import get_settings
from ..log import get_logger
from ..retrieval.index import CHUNK, CONTENT_LIBRARY, PAST_PROJECT, Embedder, VectorIndex, build_search_query
from ..schemas.answer import Evidence, PastProject
from ..schemas.brief import Brief, BriefSectionName
from ..schemas.retrieval import RetrievedCandidate, SearchHit, SourceContext
from ..scoring.confidence import clamp_similarity
from ..store.blobs import BlobStore
from ..store.db import DocumentStore
from ..store.keys import BRIEF_PREFIX, brief_id_for, brief_key, past_project_prefix
from .compress import compress_candidates, min_scores, per_chunk_allowance, render_chunks, truncate_text

logger = get_logger("context")


class ContextRequest(BaseModel):
    org_id: str
    project_id: Optional[str] = None
    opportunity_id: Optional[str] = None
    query_text: str = ""
    task_type: Optional[str] = None
    query_vector: Optional[List[float]] = None
    top_k: Optional[int] = None


class ContextSource(Protocol):
    name: str
    title: str
    hint: str

    async def load(self, request: ContextRequest, budget: int) -> SourceContext:
        ...


async def query_vector_for(request: ContextRequest, embedder: Embedder) -> Optional[List[float]]:
    if request.query_vector is not None:
        return request.query_vector
    query = build_search_query(request.query_text)
    if not query:
        return None
    return await embedder.embed(query)


def _push(parts: List[str], value: Any, prefix: Optional[str] = None):
    if value:
        parts.append(f"{prefix}: {value}" if prefix else str(value))


# --- Executive brief ------------------------------------------------------------

class ExecutiveBriefSource:
    name = "exec_brief"
    title = "EXECUTIVE OPPORTUNITY BRIEF"
    hint = "Pre-analyzed opportunity intelligence. Use to align with evaluation criteria and address risks."

    def __init__(self, documents: DocumentStore):
        self.documents = documents

    async def _find_brief(self, request: ContextRequest) -> Optional[Brief]:
        if not request.project_id:
            return None
        if request.opportunity_id:
            item = await self.documents.get(brief_key(brief_id_for(request.project_id, request.opportunity_id)))
            return Brief.model_validate(item) if item else None
        items = await self.documents.query(f"{BRIEF_PREFIX}{request.project_id}#")
        if not items:
            return None
        latest = max(items, key=lambda i: i.get("updated_at") or "")
        return Brief.model_validate(latest)

    async def load(self, request: ContextRequest, budget: int) -> SourceContext:
        brief = await self._find_brief(request)
        if brief is None:
            logger.info(f"No executive brief for project {request.project_id}")
            return SourceContext(name=self.name)

        combined = "\n".join(format_brief(brief)).strip()
        text = truncate_text(combined, budget)
        logger.info(f"execBrief context: {len(combined)} -> {len(text)} chars (budget={budget})")
        return SourceContext(name=self.name, text=text)


def format_brief(brief: Brief) -> List[str]:
    """Compact digest of the COMPLETE sections of a brief, most signal-dense first."""
    parts: List[str] = []

    summary = brief.section_data(BriefSectionName.SUMMARY)
    if summary:
        parts.append("=== OPPORTUNITY SUMMARY ===")
        for key, label in (
            ("title", "Title"), ("agency", "Agency"), ("office", "Office"),
            ("solicitation_number", "Sol#"), ("naics", "NAICS"),
            ("contract_type", "Type"), ("set_aside", "Set-Aside"),
            ("place_of_performance", "PoP"), ("estimated_value_usd", "Value"),
            ("summary", "Scope"),
        ):
            _push(parts, summary.get(key), label)

    requirements = brief.section_data(BriefSectionName.REQUIREMENTS)
    if requirements:
        parts.append("\n=== KEY REQUIREMENTS ===")
        _push(parts, requirements.get("overview"), "Overview")
        must_haves = [r for r in requirements.get("requirements") or [] if r.get("must_have")][:10]
        for i, req in enumerate(must_haves, start=1):
            parts.append(f"  {i}. {req.get('requirement')}")
        if requirements.get("evaluation_factors"):
            parts.append("Eval Factors: " + " | ".join(requirements["evaluation_factors"][:8]))
        if requirements.get("deliverables"):
            parts.append("Deliverables: " + ", ".join(requirements["deliverables"][:6]))

    risks = brief.section_data(BriefSectionName.RISKS)
    if risks:
        flags = (risks.get("red_flags") or []) + (risks.get("risks") or [])
        high = [f for f in flags if f.get("severity") in ("HIGH", "CRITICAL")][:4]
        incumbent = risks.get("incumbent_info") or {}
        if high or incumbent.get("known_incumbent"):
            parts.append("\n=== KEY RISKS ===")
            for f in high:
                mitigation = f" -> {f['mitigation']}" if f.get("mitigation") else ""
                parts.append(f"  [{f.get('severity')}] {f.get('flag')}{mitigation}")
            if incumbent.get("known_incumbent"):
                parts.append(f"  Incumbent: {incumbent.get('incumbent_name') or 'Known'}")

    contacts = brief.section_data(BriefSectionName.CONTACTS)
    if contacts and contacts.get("contacts"):
        parts.append("\n=== CONTACTS ===")
        for ct in contacts["contacts"][:4]:
            parts.append("  " + " | ".join(v for v in (ct.get("role"), ct.get("name"), ct.get("email")) if v))

    deadlines = brief.section_data(BriefSectionName.DEADLINES)
    if deadlines and (deadlines.get("submission_deadline_iso") or deadlines.get("deadlines")):
        parts.append("\n=== DEADLINES ===")
        if deadlines.get("submission_deadline_iso"):
            parts.append(f"  Submission: {deadlines['submission_deadline_iso']}")
        others = [d for d in deadlines.get("deadlines") or [] if d.get("type") != "PROPOSAL_DUE"][:3]
        for dl in others:
            parts.append(f"  {dl.get('type')}: {dl.get('date_time_iso') or dl.get('raw_text') or 'TBD'}")

    scoring = brief.section_data(BriefSectionName.SCORING)
    if scoring and scoring.get("decision"):
        parts.append("\n=== BID DECISION ===")
        _push(parts, scoring.get("decision"), "Decision")
        if scoring.get("composite_score"):
            parts.append(f"Score: {scoring['composite_score']}/5")
        if scoring.get("summary_justification"):
            parts.append(f"Rationale: {truncate_text(scoring['summary_justification'], 300)}")

    past = brief.section_data(BriefSectionName.PAST_PERFORMANCE)
    if past:
        top = [m for m in past.get("matches") or [] if (m.get("relevance_score") or 0) >= 50][:3]
        if top:
            parts.append("\n=== RELEVANT PAST PERFORMANCE ===")
            for m in top:
                desc = f": {truncate_text(m['description'], 150)}" if m.get("description") else ""
                client = f" - {m['client']}" if m.get("client") else ""
                parts.append(f"  * {m.get('title') or 'Project'} ({m.get('relevance_score')}% match){client}{desc}")
            if past.get("critical_gaps"):
                parts.append("  Gaps: " + ", ".join(past["critical_gaps"][:3]))

    return parts


# --- Knowledge base ----------------------------------------------------------------

class KnowledgeBaseSource:
    name = "knowledge_base"
    title = "COMPANY KNOWLEDGE BASE"
    hint = "Relevant company capabilities, processes, and personnel. Use to demonstrate specific expertise."
    chunk_floor = 400

    def __init__(
        self,
        index: VectorIndex,
        embedder: Embedder,
        blobs: BlobStore,
        bucket: Optional[str] = None,
        top_k: Optional[int] = None,
    ):
        self.index = index
        self.embedder = embedder
        self.blobs = blobs
        self.bucket = bucket or get_settings().DOCUMENTS_BUCKET
        self.top_k = top_k or get_settings().KB_TOP_K

    async def _load_candidate(self, hit: SearchHit) -> RetrievedCandidate:
        chunk_key = hit.metadata.get("chunk_key")
        text = ""
        if chunk_key:
            try:
                text = await self.blobs.load_text(self.bucket, chunk_key)
            except Exception as e:
                logger.warning(f"Failed to load chunk {chunk_key}: {e}")
        return RetrievedCandidate(
            source_id=hit.id,
            text=text,
            text_ref=chunk_key,
            similarity_score=clamp_similarity(hit.score),
            provenance=hit.metadata,
        )

    async def load(self, request: ContextRequest, budget: int) -> SourceContext:
        vector = await query_vector_for(request, self.embedder)
        if vector is None:
            return SourceContext(name=self.name)

        top_k = request.top_k or self.top_k
        hits = await self.index.search(request.org_id, vector, top_k, CHUNK)
        if not hits:
            return SourceContext(name=self.name)

        # One candidate per chunk file
        unique: Dict[str, SearchHit] = {}
        for hit in hits[:top_k]:
            unique.setdefault(hit.metadata.get("chunk_key") or hit.id, hit)

        min_score = min_scores()[self.name]
        relevant = [h for h in unique.values() if (h.score or 0) >= min_score]
        if not relevant:
            return SourceContext(name=self.name)

        per_chunk = per_chunk_allowance(budget, len(hits), self.chunk_floor)
        candidates = await asyncio.gather(*(self._load_candidate(h) for h in relevant))
        chunks = compress_candidates(candidates, min_score, per_chunk)
        if not chunks:
            return SourceContext(name=self.name)

        by_id = {c.source_id: c for c in candidates}
        kept = [by_id[chunk.source_id] for chunk in chunks]
        text = render_chunks(chunks, budget)
        logger.info(f"KB context: {len(chunks)} chunks -> {len(text)} chars (budget={budget})")
        return SourceContext(
            name=self.name,
            text=text,
            chunks=chunks,
            similarity_scores=[c.similarity_score for c in kept],
            evidence=[
                Evidence(
                    id=c.source_id,
                    document_id=c.provenance.get("document_id"),
                    file_name=c.provenance.get("file_name"),
                    chunk_ref=c.text_ref,
                    text_content=c.text or "",
                    relevance=c.similarity_score,
                )
                for c in kept
            ],
            source_dates=[c.provenance["created_at"] for c in kept if c.provenance.get("created_at")],
        )


# --- Past performance ----------------------------------------------------------------

class PastPerformanceSource:
    name = "past_performance"
    title = "PAST PERFORMANCE"
    hint = "Relevant past contracts. Reference to prove track record and relevant experience."
    top_k = 5

    def __init__(self, index: VectorIndex, embedder: Embedder, documents: DocumentStore):
        self.index = index
        self.embedder = embedder
        self.documents = documents

    async def _list_projects(self, org_id: str) -> List[str]:
        items = await self.documents.query(past_project_prefix(org_id))
        projects = [PastProject.model_validate(i) for i in items]
        projects = [p for p in projects if not p.archived][: self.top_k]
        return [format_past_project(i, p) for i, p in enumerate(projects, start=1)]

    async def load(self, request: ContextRequest, budget: int) -> SourceContext:
        vector = await query_vector_for(request, self.embedder)
        if vector is None:
            return SourceContext(name=self.name)

        hits = await self.index.search(request.org_id, vector, self.top_k, PAST_PROJECT)
        min_score = min_scores()[self.name]
        relevant = [h for h in hits if (h.score or 0) >= min_score]

        if relevant:
            projects = [format_past_project_hit(i, h) for i, h in enumerate(relevant, start=1)]
        else:
            # Nothing semantically close: fall back to the org's own project list
            projects = await self._list_projects(request.org_id)

        if not projects:
            return SourceContext(name=self.name)
        text = truncate_text("\n\n".join(projects), budget)
        logger.info(f"pastPerf context: {len(projects)} projects -> {len(text)} chars (budget={budget})")
        return SourceContext(name=self.name, text=text)


def format_past_project_hit(ordinal: int, hit: SearchHit) -> str:
    meta = hit.metadata
    lines = [f"[{ordinal}] {meta.get('title') or 'Project'} (score={(hit.score or 0):.2f})"]
    _push(lines, meta.get("client"), "  Client")
    _push(lines, meta.get("domain"), "  Domain")
    if meta.get("technologies"):
        lines.append("  Tech: " + ", ".join(list(meta["technologies"])[:5]))
    return "\n".join(lines)


def format_past_project(ordinal: int, project: PastProject) -> str:
    lines = [f"[{ordinal}] {project.title}"]
    _push(lines, project.client, "  Client")
    if project.description:
        lines.append(f"  {truncate_text(project.description, 200)}")
    if project.technologies:
        lines.append("  Tech: " + ", ".join(project.technologies[:5]))
    if project.achievements:
        lines.append("  Results: " + "; ".join(project.achievements[:2]))
    if project.value:
        lines.append(f"  Value: ${project.value:,.0f}")
    if project.performance_rating:
        lines.append(f"  Rating: {project.performance_rating}/5")
    return "\n".join(lines)


# --- Content library ------------------------------------------------------------------

class ContentLibrarySource:
    name = "content_library"
    title = "CONTENT LIBRARY"
    hint = "Pre-approved messaging snippets. Use for consistent, vetted language."
    top_k = 10
    chunk_floor = 300

    def __init__(self, index: VectorIndex, embedder: Embedder, documents: DocumentStore):
        self.index = index
        self.embedder = embedder
        self.documents = documents

    async def _load_candidate(self, hit: SearchHit) -> RetrievedCandidate:
        text = hit.metadata.get("text") or ""
        item_key = hit.metadata.get("item_key")
        if item_key:
            item = await self.documents.get(item_key)
            if item:
                text = f"Q: {item.get('question', '')}\nA: {item.get('answer', '')}"
        return RetrievedCandidate(
            source_id=hit.id,
            text=text,
            text_ref=item_key,
            similarity_score=clamp_similarity(hit.score),
            provenance=hit.metadata,
        )

    async def load(self, request: ContextRequest, budget: int) -> SourceContext:
        vector = await query_vector_for(request, self.embedder)
        if vector is None:
            return SourceContext(name=self.name)

        hits = await self.index.search(request.org_id, vector, self.top_k, CONTENT_LIBRARY)
        if not hits:
            return SourceContext(name=self.name)

        min_score = min_scores()[self.name]
        per_chunk = per_chunk_allowance(budget, len(hits), self.chunk_floor)
        relevant = [h for h in hits[: self.top_k] if (h.score or 0) >= min_score]
        candidates = await asyncio.gather(*(self._load_candidate(h) for h in relevant))
        chunks = compress_candidates(candidates, min_score, per_chunk)
        if not chunks:
            return SourceContext(name=self.name)

        text = render_chunks(chunks, budget)
        logger.info(f"contentLib context: {len(chunks)} snippets -> {len(text)} chars (budget={budget})")
        return SourceContext(name=self.name, text=text, chunks=chunks)
