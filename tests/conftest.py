import os
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest
from dotenv import load_dotenv

from capture_engine.llm.json_extract import parse_model_json
from capture_engine.schemas.retrieval import SearchHit
from capture_engine.store.db import SqliteDocumentStore


@pytest.fixture(scope="session", autouse=True)
def _load_env():
    # Load .env once per session to avoid side-effects on import time
    load_dotenv()


def _truthy(v: Optional[str]) -> bool:
    return v is not None and v.strip().lower() not in ("", "0", "false", "no")


@pytest.fixture(scope="session")
def allow_integration(_load_env) -> bool:
    return _truthy(os.getenv("RUN_INTEGRATION_TESTS"))


# --- Fakes for the external collaborators -----------------------------------------

class FakeIndex:
    """Vector index returning canned hits per type_filter; records every search."""

    def __init__(self, hits: Optional[Dict[str, List[SearchHit]]] = None, fail: Sequence[str] = ()):
        self.hits = hits or {}
        self.fail = set(fail)
        self.calls: List[Dict[str, Any]] = []

    async def search(self, namespace, query_vector, top_k, type_filter, id_filter=None):
        self.calls.append({"namespace": namespace, "top_k": top_k, "type_filter": type_filter})
        if type_filter in self.fail:
            raise RuntimeError(f"index unavailable for {type_filter}")
        return list(self.hits.get(type_filter, []))[:top_k]


class FakeEmbedder:
    def __init__(self, vector: Optional[List[float]] = None):
        self.vector = vector or [0.1, 0.2, 0.3]
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        return list(self.vector)


class FakeBlobs:
    def __init__(self, blobs: Optional[Dict[str, str]] = None):
        self.blobs = dict(blobs or {})
        self.reads: List[str] = []

    async def load_text(self, bucket: str, key: str) -> str:
        self.reads.append(key)
        return self.blobs.get(key, "")

    async def put_text(self, bucket: str, key: str, content: str, content_type: str = "text/plain") -> None:
        self.blobs[key] = content


Response = Union[str, Exception, Callable[[str], str]]


class FakeLLM:
    """
    Stands in for LLMClient. Responses are keyed by the requested schema name
    (e.g. "ModelAnswer", "ScoringSection"); a response is raw model text, an
    exception to raise, or a callable receiving the user prompt.
    """

    def __init__(self, responses: Optional[Dict[str, Response]] = None):
        self.responses = dict(responses or {})
        self.calls: List[Dict[str, Any]] = []

    async def run_json(self, model, system, user, schema, max_tokens=2000, temperature=0.2):
        self.calls.append({"model": model, "system": system, "user": user, "schema": schema.__name__})
        response = self.responses.get(schema.__name__)
        if response is None:
            raise AssertionError(f"FakeLLM has no response for {schema.__name__}")
        if isinstance(response, Exception):
            raise response
        raw = response(user) if callable(response) else response
        return parse_model_json(raw, schema)

    def calls_for(self, schema_name: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["schema"] == schema_name]


@pytest.fixture
def store(tmp_path):
    """Temporary sqlite document store with the schema initialized."""
    documents = SqliteDocumentStore(str(tmp_path / "test_capture.db"))
    documents.init_db()
    return documents


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def blobs():
    return FakeBlobs()


def kb_hit(i: int, score: float, created_at: Optional[str] = None) -> SearchHit:
    metadata = {"chunk_key": f"chunks/doc{i}.txt", "document_id": f"doc{i}", "file_name": f"doc{i}.pdf"}
    if created_at:
        metadata["created_at"] = created_at
    return SearchHit(id=f"chunk-{i}", score=score, metadata=metadata)


def kb_text(i: int) -> str:
    return (
        f"Our team delivered cloud migration project number {i} for a federal agency. "
        f"The engagement covered security accreditation and continuous monitoring. "
        f"All milestones were met on schedule and within budget."
    )
