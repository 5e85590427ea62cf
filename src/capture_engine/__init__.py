"""Capture Engine - evidence-grounded answers and opportunity briefs.

Answers solicitation questions and builds multi-section bid/no-bid briefs
with retrieval-augmented generation over a company's knowledge base, past
performance and pre-approved content library.

Components:
- context: budgeted, concurrent context assembly and compression
- library: content-library short-circuit matcher
- scoring: multi-factor confidence scoring
- brief: section state machine and section runner
- pipeline: answer generation
- store: sqlite document store, blob store, repositories
- llm: OpenAI client, prompt templates, JSON extraction
- mlops: MLflow tracing
"""
