import pytest

from capture_engine.errors import ModelOutputError
from capture_engine.llm.json_extract import JsonErr, JsonOk, extract_json, parse_model_json
from capture_engine.schemas.answer import ModelAnswer


def test_plain_json():
    result = extract_json('{"answer": "yes", "confidence": 0.9, "found": true}')
    assert isinstance(result, JsonOk)
    assert result.value["found"] is True


def test_fenced_json():
    result = extract_json('Here you go:\n```json\n{"match": true, "index": 2}\n```\nThanks')
    assert isinstance(result, JsonOk)
    assert result.value == {"match": True, "index": 2}


def test_prose_wrapped_json_with_braces_inside_strings():
    """
    WHY: Models wrap JSON in prose and answers can contain braces and escaped quotes.
    HOW: Prose before and after an object whose string values contain "}" and \\".
    EXPECTED: The first balanced object is returned intact.
    """
    text = 'Sure! {"answer": "use {braces} and \\"quotes\\"", "found": true} Hope this helps {not json}'
    result = extract_json(text)
    assert isinstance(result, JsonOk)
    assert result.value["answer"] == 'use {braces} and "quotes"'


def test_array_payload():
    result = extract_json('The list: [1, 2, {"a": [3]}] end')
    assert isinstance(result, JsonOk)
    assert result.value == [1, 2, {"a": [3]}]


@pytest.mark.parametrize(
    "text,reason",
    [
        ("", "empty"),
        ("   ", "empty"),
        ("I could not find anything relevant.", "no_json"),
        ('{"answer": "the response was cut off mid', "truncated"),
        ("{'answer': 'single quotes'}", "malformed"),
    ],
)
def test_error_reasons(text, reason):
    result = extract_json(text)
    assert isinstance(result, JsonErr)
    assert result.reason == reason


def test_truncated_excerpt_carries_the_tail():
    text = '{"answer": "' + "a" * 1000 + "TAIL"
    result = extract_json(text)
    assert isinstance(result, JsonErr)
    assert result.excerpt.endswith("TAIL")
    assert len(result.excerpt) <= 300


def test_parse_model_json_validates_schema():
    answer = parse_model_json('{"answer": "Yes.", "confidence": 85, "found": true}', ModelAnswer)
    # 0-100 scale is normalized
    assert answer.confidence == pytest.approx(0.85)

    with pytest.raises(ModelOutputError) as exc:
        parse_model_json('{"answer": ["not", "a", "string"]}', ModelAnswer)
    assert exc.value.reason == "schema"

    with pytest.raises(ModelOutputError) as exc:
        parse_model_json("no json here", ModelAnswer)
    assert exc.value.reason == "no_json"
