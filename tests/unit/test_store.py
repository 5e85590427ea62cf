import pytest

from capture_engine.errors import ConditionalWriteFailedError
from capture_engine.schemas.answer import ConfidenceBreakdown, Evidence
from capture_engine.store.answers import AnswerRepo
from capture_engine.store.blobs import LocalBlobStore
from capture_engine.store.db import Equals, Exists, IfNotExists, NotExists


@pytest.mark.asyncio
async def test_put_not_exists_rejects_duplicates(store):
    await store.put("K#1", {"a": 1}, conditions=[NotExists()])
    with pytest.raises(ConditionalWriteFailedError):
        await store.put("K#1", {"a": 2}, conditions=[NotExists()])
    assert await store.get("K#1") == {"a": 1}


@pytest.mark.asyncio
async def test_update_is_path_scoped(store):
    """
    WHY: Concurrent writers to different sections of one record must not clobber each other.
    HOW: Two updates to different nested paths of the same item.
    EXPECTED: Both values survive; unrelated fields are untouched.
    """
    await store.put("K#1", {"sections": {"a": {"v": 1}, "b": {"v": 1}}, "keep": True})
    await store.update("K#1", set_values={"sections.a.v": 2})
    await store.update("K#1", set_values={"sections.b.v": 3})

    doc = await store.get("K#1")
    assert doc == {"sections": {"a": {"v": 2}, "b": {"v": 3}}, "keep": True}


@pytest.mark.asyncio
async def test_update_conditions(store):
    await store.put("K#1", {"version": "v1"})

    await store.update("K#1", set_values={"x": 1}, conditions=[Equals("version", "v1")])
    with pytest.raises(ConditionalWriteFailedError):
        await store.update("K#1", set_values={"x": 2}, conditions=[Equals("version", "v0")])
    with pytest.raises(ConditionalWriteFailedError):
        await store.update("K#missing", set_values={"x": 1}, conditions=[Exists()])

    assert (await store.get("K#1"))["x"] == 1
    assert await store.get("K#missing") is None


@pytest.mark.asyncio
async def test_if_not_exists_backfills_only_once(store):
    await store.put("K#1", {"sections": {}})
    await store.update("K#1", set_values={"sections.new": IfNotExists({"status": "IDLE"})})
    await store.update("K#1", set_values={"sections.new.status": "COMPLETE"})
    await store.update("K#1", set_values={"sections.new": IfNotExists({"status": "IDLE"})})
    assert (await store.get("K#1"))["sections"]["new"] == {"status": "COMPLETE"}


@pytest.mark.asyncio
async def test_query_by_prefix(store):
    for key in ("PAST_PROJECT#org-1#a", "PAST_PROJECT#org-1#b", "PAST_PROJECT#org-2#c"):
        await store.put(key, {"key": key})
    items = await store.query("PAST_PROJECT#org-1#")
    assert [i["key"] for i in items] == ["PAST_PROJECT#org-1#a", "PAST_PROJECT#org-1#b"]
    assert len(await store.query("PAST_PROJECT#", limit=1)) == 1


def _breakdown(v=70):
    return ConfidenceBreakdown(
        context_relevance=v, source_recency=v, answer_coverage=v, source_authority=v, consistency=v
    )


@pytest.mark.asyncio
async def test_answer_update_preserves_identity(store):
    """
    WHY: There is exactly one current Answer per (project, question); regenerating must not duplicate it.
    HOW: Save twice for the same question with different content.
    EXPECTED: Same id and created_at; text, confidence and sources replaced.
    """
    repo = AnswerRepo(store)
    first = await repo.save(
        project_id="p-1", question_id="q-1", org_id="org-1", text="First draft",
        confidence=0.5, confidence_breakdown=_breakdown(50), confidence_band="low",
        sources=[Evidence(id="e1", text_content="old")], from_library=False, found=True,
    )
    second = await repo.save(
        project_id="p-1", question_id="q-1", org_id="org-1", text="Second draft",
        confidence=0.92, confidence_breakdown=_breakdown(92), confidence_band="high",
        sources=[], from_library=True, found=True,
    )

    assert second.id == first.id
    assert second.created_at == first.created_at
    assert second.text == "Second draft"
    assert second.sources == []
    assert second.confidence_band == "high"
    assert len(await store.query("ANSWER#p-1#")) == 1


@pytest.mark.asyncio
async def test_local_blob_store_roundtrip_and_missing(tmp_path):
    blobs = LocalBlobStore(str(tmp_path))
    await blobs.put_text("documents", "org-1/sol.txt", "Solicitation body")
    assert await blobs.load_text("documents", "org-1/sol.txt") == "Solicitation body"
    assert await blobs.load_text("documents", "org-1/missing.txt") == ""
    with pytest.raises(ValueError):
        await blobs.load_text("documents", "../../etc/passwd")
