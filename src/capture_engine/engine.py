"""Wiring for the answer and brief engines.

build_engine() connects the local sqlite document store, the filesystem blob
store and OpenAI to a caller-supplied vector index.
"""

from dataclasses import dataclass
from typing import Optional

from .brief.repo import BriefRepo
from .brief.runner import SectionRunner
from .config import get_settings
from .context.assembly import ContextAssembler
from .context.budget import load_budget_table
from .context.sources import ContentLibrarySource, ExecutiveBriefSource, KnowledgeBaseSource, PastPerformanceSource
from .library.matcher import ContentLibraryMatcher
from .llm.client import LLMClient
from .log import get_logger, setup_logging
from .pipeline.answer import AnswerPipeline
from .retrieval.index import Embedder, OpenAIEmbedder, VectorIndex
from .store.answers import AnswerRepo
from .store.blobs import BlobStore, LocalBlobStore
from .store.db import DocumentStore, SqliteDocumentStore

logger = get_logger("engine")


@dataclass
class Engine:
    documents: DocumentStore
    answers: AnswerRepo
    briefs: BriefRepo
    pipeline: AnswerPipeline
    runner: SectionRunner


def build_engine(
    index: VectorIndex,
    documents: Optional[DocumentStore] = None,
    blobs: Optional[BlobStore] = None,
    embedder: Optional[Embedder] = None,
    llm: Optional[LLMClient] = None,
) -> Engine:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    if documents is None:
        store = SqliteDocumentStore(settings.DB_PATH)
        store.init_db()
        documents = store
    blobs = blobs or LocalBlobStore(settings.BLOB_ROOT)
    embedder = embedder or OpenAIEmbedder()
    llm = llm or LLMClient()

    budget_table = load_budget_table(settings.CONTEXT_BUDGETS_PATH)
    knowledge_base = KnowledgeBaseSource(index, embedder, blobs, settings.DOCUMENTS_BUCKET)
    past_performance = PastPerformanceSource(index, embedder, documents)

    answers = AnswerRepo(documents)
    briefs = BriefRepo(documents)

    # Priority order: brief, knowledge base, past performance, content library
    answer_context = ContextAssembler(
        [ExecutiveBriefSource(documents), knowledge_base, past_performance, ContentLibrarySource(index, embedder, documents)],
        budget_table=budget_table,
    )
    # A brief's own sections are read from the solicitation, not from the brief
    brief_context = ContextAssembler([knowledge_base, past_performance], budget_table=budget_table)

    pipeline = AnswerPipeline(
        embedder=embedder,
        assembler=answer_context,
        llm=llm,
        answers=answers,
        matcher=ContentLibraryMatcher(index, documents, llm, answers),
    )
    runner = SectionRunner(briefs, llm, blobs, context=brief_context)
    logger.info(f"Engine ready (db={settings.DB_PATH}, blobs={settings.BLOB_ROOT}, {len(budget_table)} budget task types)")
    return Engine(documents=documents, answers=answers, briefs=briefs, pipeline=pipeline, runner=runner)
