from capture_engine.context.compress import (
    TRUNCATION_MARKER,
    compress_candidates,
    compress_chunk,
    is_boilerplate,
    per_chunk_allowance,
    render_chunks,
    truncate_text,
)
from capture_engine.schemas.retrieval import RetrievedCandidate


def _candidate(i: int, score: float, text: str) -> RetrievedCandidate:
    return RetrievedCandidate(source_id=f"c{i}", text=text, similarity_score=score)


def test_truncate_text_never_exceeds_cap():
    """
    WHY: The final backstop must hold the global cap exactly, marker included.
    HOW: Truncate long text to several caps, including one smaller than the marker.
    EXPECTED: Output length <= cap; the marker is appended when there is room for it.
    """
    text = "x" * 1000
    for cap in (5, len(TRUNCATION_MARKER), 50, 999):
        assert len(truncate_text(text, cap)) <= cap
    assert truncate_text(text, 100).endswith(TRUNCATION_MARKER)
    assert truncate_text("short", 100) == "short"
    assert truncate_text("anything", 0) == ""


def test_boilerplate_detection():
    assert is_boilerplate("12345")
    assert is_boilerplate("SECTION C - STATEMENT OF WORK")
    assert is_boilerplate("Page 4 of 112 of the solicitation document")
    assert is_boilerplate("Too short.")
    assert not is_boilerplate("The contractor shall provide monthly status reports.")


def test_compress_chunk_drops_boilerplate_and_keeps_order():
    """
    WHY: Compression should keep informative sentences in their original order.
    HOW: Mix navigational and header noise with two real sentences.
    EXPECTED: Only the real sentences remain, first one first.
    """
    text = (
        "Page 3 of 40 in this attachment. "
        "The contractor shall provide monthly status reports. "
        "12345. "
        "All deliverables are due within thirty days of award."
    )
    result = compress_chunk(text, 500)
    assert "Page 3" not in result
    assert result.index("monthly status") < result.index("thirty days")


def test_compress_chunk_never_empty_for_nonempty_input():
    """
    WHY: A retained candidate must always contribute something.
    HOW: Compress text made entirely of boilerplate, and a single sentence longer than the cap.
    EXPECTED: Falls back to raw truncation instead of returning "".
    """
    assert compress_chunk("12345 67890", 100) == "12345 67890"
    long_sentence = "word " * 200
    result = compress_chunk(long_sentence, 50)
    assert result
    assert len(result) <= 50


def test_compress_candidates_filters_and_preserves_rank_order():
    """
    WHY: Low-similarity candidates are noise, and the model is told chunks are rank ordered.
    HOW: Three candidates, the middle one below threshold.
    EXPECTED: Two chunks, ordinals 1 and 2, in the original order, with scores retained.
    """
    candidates = [
        _candidate(1, 0.9, "First relevant passage about cyber security operations."),
        _candidate(2, 0.2, "Irrelevant passage about the cafeteria menu and parking."),
        _candidate(3, 0.6, "Second relevant passage about incident response staffing."),
    ]
    chunks = compress_candidates(candidates, min_score=0.45, max_chars_per_chunk=400)
    assert [c.source_id for c in chunks] == ["c1", "c3"]
    assert [c.ordinal for c in chunks] == [1, 2]
    assert chunks[0].score == 0.9


def test_compress_candidates_skips_unloaded_text():
    candidates = [_candidate(1, 0.9, ""), _candidate(2, 0.8, "Loaded passage about network engineering support.")]
    chunks = compress_candidates(candidates, min_score=0.4, max_chars_per_chunk=400)
    assert [c.source_id for c in chunks] == ["c2"]
    assert chunks[0].ordinal == 1


def test_per_chunk_allowance_has_floor():
    assert per_chunk_allowance(8000, 4, 400) == 2000
    assert per_chunk_allowance(8000, 100, 400) == 400
    assert per_chunk_allowance(8000, 0, 400) == 8000


def test_render_chunks_labels_and_caps():
    chunks = compress_candidates(
        [_candidate(i, 0.8, f"Passage {i} describing relevant past work in detail.") for i in range(1, 4)],
        min_score=0.4,
        max_chars_per_chunk=400,
    )
    rendered = render_chunks(chunks, 10_000)
    assert rendered.startswith("[1] [score=0.80]\n")
    assert "[3] [score=0.80]" in rendered
    assert len(render_chunks(chunks, 60)) <= 60
