import pytest

from capture_engine.engine import build_engine
from capture_engine.retrieval.index import CHUNK
from capture_engine.schemas.brief import BriefSectionName, SectionStatus

from conftest import FakeBlobs, FakeEmbedder, FakeIndex, FakeLLM, kb_hit, kb_text


@pytest.mark.asyncio
async def test_engine_wires_brief_into_answer_context(store):
    """
    WHY: A completed brief section should inform later answers for the same opportunity.
    HOW: Build the engine on fakes, complete the brief summary, then answer a question.
    EXPECTED: The answer prompt carries both the brief digest and the knowledge-base block.
    """
    index = FakeIndex({CHUNK: [kb_hit(1, 0.9)]})
    blobs = FakeBlobs({"chunks/doc1.txt": kb_text(1)})
    llm = FakeLLM({
        "ModelAnswer": '{"answer": "Yes, we have done this before for DHS.", "confidence": 0.7, "found": true}',
    })
    engine = build_engine(index, documents=store, blobs=blobs, embedder=FakeEmbedder(), llm=llm)

    brief = await engine.briefs.create_brief("org-1", "p-1", "opp-1", ["sol.txt"])
    await engine.briefs.mark_complete(
        brief.id, BriefSectionName.SUMMARY, {"agency": "DHS", "summary": "Security operations center support."}
    )

    answer = await engine.pipeline.generate_answer({
        "org_id": "org-1",
        "project_id": "p-1",
        "question_id": "q-1",
        "opportunity_id": "opp-1",
        "question_text": "Have you supported DHS before?",
    })

    prompt = llm.calls_for("ModelAnswer")[0]["user"]
    assert "EXECUTIVE OPPORTUNITY BRIEF" in prompt
    assert "Agency: DHS" in prompt
    assert "COMPANY KNOWLEDGE BASE" in prompt
    assert answer.found is True
    assert (await engine.briefs.get_brief(brief.id)).section(BriefSectionName.SUMMARY).status == SectionStatus.COMPLETE
