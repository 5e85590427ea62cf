"""Recover a JSON value from model output that may be wrapped in prose or fences.

extract_json() is a small tagged scanner: it tracks string/escape state and
{} / [] depth from the first opening bracket, and returns the first balanced
value. The result is a JsonOk or a JsonErr carrying a reason and an excerpt
of the raw output, never a bare exception.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from ..errors import ModelOutputError

T = TypeVar("T", bound=BaseModel)

EXCERPT_CHARS = 300

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)


@dataclass(frozen=True)
class JsonOk:
    value: Any
    raw: str


@dataclass(frozen=True)
class JsonErr:
    reason: str  # empty | no_json | truncated | malformed
    excerpt: str
    detail: str = ""


JsonResult = Union[JsonOk, JsonErr]


def _tail(text: str) -> str:
    return text[-EXCERPT_CHARS:] if len(text) > EXCERPT_CHARS else text


def extract_json(text: str) -> JsonResult:
    if not text or not text.strip():
        return JsonErr("empty", "", "Empty model output")

    fenced = _FENCE_RE.search(text)
    candidate = fenced.group(1).strip() if fenced else text.strip()

    try:
        return JsonOk(json.loads(candidate), candidate)
    except json.JSONDecodeError:
        pass

    starts = [i for i in (candidate.find("{"), candidate.find("[")) if i != -1]
    if not starts:
        return JsonErr("no_json", candidate[:EXCERPT_CHARS], 'No JSON start "{" or "[" found')
    start = min(starts)

    depth = 0
    in_string = False
    escape_next = False
    for i in range(start, len(candidate)):
        ch = candidate[i]
        if escape_next:
            escape_next = False
            continue
        if in_string:
            if ch == "\\":
                escape_next = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
        elif ch in "}]":
            depth -= 1
            if depth == 0:
                raw = candidate[start:i + 1]
                try:
                    return JsonOk(json.loads(raw), raw)
                except json.JSONDecodeError as e:
                    return JsonErr("malformed", _tail(raw), f"{e.msg} (JSON length {len(raw)})")

    return JsonErr(
        "truncated",
        _tail(candidate),
        f"No complete JSON found; depth at end {depth}, in string {in_string}",
    )


def parse_model_json(text: str, schema: Type[T]) -> T:
    """Extract and validate; raises ModelOutputError with the raw tail attached."""
    result = extract_json(text)
    if isinstance(result, JsonErr):
        raise ModelOutputError(result.reason, result.excerpt, result.detail)
    try:
        return schema.model_validate(result.value)
    except ValidationError as e:
        raise ModelOutputError("schema", _tail(result.raw), f"{e.error_count()} validation error(s): {e.errors()[0]['msg']}")
