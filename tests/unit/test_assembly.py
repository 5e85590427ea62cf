import asyncio

import pytest

from capture_engine.context.assembly import ContextAssembler
from capture_engine.context.budget import BudgetTable, ContextBudget
from capture_engine.context.sources import ContextRequest, KnowledgeBaseSource
from capture_engine.retrieval.index import CHUNK
from capture_engine.schemas.retrieval import SourceContext

from conftest import FakeBlobs, FakeEmbedder, FakeIndex, kb_hit, kb_text


class StaticSource:
    def __init__(self, name, text, delay=0.0, error=None):
        self.name = name
        self.title = name.upper()
        self.hint = f"hint for {name}"
        self.text = text
        self.delay = delay
        self.error = error
        self.budgets = []

    async def load(self, request, budget):
        self.budgets.append(budget)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return SourceContext(name=self.name, text=self.text)


def _request(**kwargs):
    return ContextRequest(org_id="org-1", project_id="p-1", query_text="cloud migration", **kwargs)


@pytest.mark.asyncio
async def test_blocks_follow_priority_order_with_title_and_hint():
    """
    WHY: The model is told sources appear in a fixed priority order.
    HOW: Four static sources, one of them empty.
    EXPECTED: Non-empty blocks in constructor order, each with its title and hint; the empty one is omitted.
    """
    sources = [
        StaticSource("exec_brief", "brief text"),
        StaticSource("knowledge_base", "kb text"),
        StaticSource("past_performance", ""),
        StaticSource("content_library", "library text"),
    ]
    context = await ContextAssembler(sources).gather(_request())

    assert context.text.index("--- EXEC_BRIEF ---") < context.text.index("--- KNOWLEDGE_BASE ---")
    assert context.text.index("--- KNOWLEDGE_BASE ---") < context.text.index("--- CONTENT_LIBRARY ---")
    assert "PAST_PERFORMANCE" not in context.text
    assert "(hint for knowledge_base)\nkb text" in context.text


@pytest.mark.asyncio
async def test_each_source_gets_its_task_type_allowance():
    sources = [StaticSource(n, "x") for n in ("exec_brief", "knowledge_base", "past_performance", "content_library")]
    await ContextAssembler(sources).gather(_request(task_type="PAST_PERFORMANCE"))
    assert [s.budgets[0] for s in sources] == [6_000, 4_000, 12_000, 4_000]


@pytest.mark.asyncio
async def test_failing_source_contributes_nothing():
    """
    WHY: Partial context beats none; one broken source must not fail the request.
    HOW: One source raises, the others return text.
    EXPECTED: The assembled context holds the healthy sources, the failed one is recorded with an error.
    """
    sources = [
        StaticSource("exec_brief", "brief text"),
        StaticSource("knowledge_base", "kb text", error=RuntimeError("index down")),
        StaticSource("past_performance", "past text"),
        StaticSource("content_library", "library text"),
    ]
    context = await ContextAssembler(sources).gather(_request())

    assert "brief text" in context.text
    assert "past text" in context.text
    assert "kb text" not in context.text
    assert "RuntimeError" in context.source("knowledge_base").error


@pytest.mark.asyncio
async def test_slow_source_times_out_as_empty():
    sources = [StaticSource("exec_brief", "brief text"), StaticSource("knowledge_base", "kb text", delay=1.0)]
    context = await ContextAssembler(sources, source_timeout=0.05).gather(_request())

    assert "brief text" in context.text
    assert context.source("knowledge_base").error == "timeout"


@pytest.mark.asyncio
async def test_sources_load_concurrently():
    """
    WHY: Sequential awaiting multiplies latency by the number of sources.
    HOW: Four sources that each sleep 0.2s.
    EXPECTED: The whole gather finishes well under 0.8s.
    """
    sources = [StaticSource(n, "x", delay=0.2) for n in ("exec_brief", "knowledge_base", "past_performance", "content_library")]
    loop = asyncio.get_running_loop()
    start = loop.time()
    await ContextAssembler(sources).gather(_request())
    assert loop.time() - start < 0.6


@pytest.mark.asyncio
async def test_output_never_exceeds_total_budget():
    """
    WHY: The global cap is a hard limit even if loaders misbehave.
    HOW: Sources return text far above their allowance, with a small custom table.
    EXPECTED: Each contribution is cut to its allowance and the whole context to the total.
    """
    small = ContextBudget(exec_brief=300, knowledge_base=300, past_performance=300, content_library=300, total=1000)
    table = BudgetTable({}, default=small)
    sources = [StaticSource(n, "y" * 5000) for n in ("exec_brief", "knowledge_base", "past_performance", "content_library")]
    context = await ContextAssembler(sources, budget_table=table).gather(_request())

    assert len(context.text) <= 1000
    assert all(len(s.text) <= 300 for s in context.sources)
    assert context.total_budget == 1000


@pytest.mark.asyncio
async def test_knowledge_base_source_filters_compresses_and_attributes():
    """
    WHY: Knowledge-base chunks below the relevance threshold are noise, and kept chunks become Answer evidence.
    HOW: Three hits (one below 0.45, two duplicates of the same chunk file) with text in the blob store.
    EXPECTED: Two chunks in rank order, evidence and similarity scores for exactly those chunks.
    """
    hits = [kb_hit(1, 0.91, created_at="2026-01-01T00:00:00Z"), kb_hit(1, 0.90), kb_hit(2, 0.62), kb_hit(3, 0.30)]
    blobs = FakeBlobs({f"chunks/doc{i}.txt": kb_text(i) for i in (1, 2, 3)})
    source = KnowledgeBaseSource(FakeIndex({CHUNK: hits}), FakeEmbedder(), blobs, bucket="documents")

    result = await source.load(_request(query_vector=[0.1, 0.2]), budget=8000)

    assert [c.ordinal for c in result.chunks] == [1, 2]
    assert result.text.startswith("[1] [score=0.91]")
    assert result.similarity_scores == [0.91, 0.62]
    assert [e.document_id for e in result.evidence] == ["doc1", "doc2"]
    assert result.source_dates == ["2026-01-01T00:00:00Z"]
    assert "chunks/doc3.txt" not in blobs.reads


@pytest.mark.asyncio
async def test_knowledge_base_source_without_relevant_hits_is_empty():
    source = KnowledgeBaseSource(FakeIndex({CHUNK: [kb_hit(1, 0.1)]}), FakeEmbedder(), FakeBlobs(), bucket="documents")
    result = await source.load(_request(query_vector=[0.1]), budget=8000)
    assert result.text == ""
    assert result.evidence == []


@pytest.mark.asyncio
async def test_knowledge_base_source_keeps_scores_slightly_above_one():
    """
    WHY: Dot-product indexes and float drift can report a similarity a hair above 1.0.
    HOW: One hit scored 1.0000002 with its chunk text in the blob store.
    EXPECTED: The chunk is kept and its similarity is clamped to 1.0.
    """
    blobs = FakeBlobs({"chunks/doc1.txt": kb_text(1)})
    source = KnowledgeBaseSource(FakeIndex({CHUNK: [kb_hit(1, 1.0000002)]}), FakeEmbedder(), blobs, bucket="documents")

    result = await source.load(_request(query_vector=[0.1]), budget=8000)

    assert len(result.chunks) == 1
    assert result.similarity_scores == [1.0]
    assert [e.document_id for e in result.evidence] == ["doc1"]
