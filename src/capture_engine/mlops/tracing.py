"""
MLflow tracing integration for LLM observability.
Provides span-based tracing for context assembly, library matching, LLM calls and brief sections.
"""
import logging
import time
from typing import Optional, Dict, Any
from contextlib import contextmanager

import mlflow

from ..config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class MLflowTracer:
    """Handles MLflow tracing for LLM observability."""

    def __init__(self):
        self.enabled = settings.MLFLOW_ENABLE_TRACING
        if self.enabled:
            try:
                mlflow.set_tracking_uri(settings.MLFLOW_TRACKING_URI)
                logger.info("MLflow tracing enabled")
            except Exception as e:
                logger.warning(f"Failed to initialize MLflow tracing: {e}")
                self.enabled = False

    @contextmanager
    def span(
        self,
        name: str,
        span_type: str = "UNKNOWN",
        attributes: Optional[Dict[str, Any]] = None,
        inputs: Optional[Dict[str, Any]] = None
    ):
        """
        Create a traced span for an operation.

        Args:
            name: Name of the span (e.g., "context.assemble", "brief.section")
            span_type: Type of span (e.g., "LLM", "RETRIEVER", "CHAIN")
            attributes: Additional metadata for the span
            inputs: Input data to the operation
        """
        if not self.enabled:
            yield None
            return

        with mlflow.start_span(name=name, span_type=span_type) as span:
            if attributes:
                span.set_attributes(attributes)
            if inputs:
                span.set_inputs(inputs)

            start_time = time.time()
            yield span
            elapsed = time.time() - start_time
            span.set_attribute("latency_ms", int(elapsed * 1000))

    def _set_current(self, attributes: Dict[str, Any]):
        try:
            current_span = mlflow.get_current_active_span()
            if current_span:
                current_span.set_attributes(attributes)
        except Exception as e:
            logger.warning(f"Failed to record span attributes: {e}")

    def trace_llm_call(self, model: str, prompt: str, response: str):
        """Log details of an LLM call within the current span."""
        if not self.enabled:
            return
        self._set_current({
            "model": model,
            "prompt_length": len(prompt),
            "response_length": len(response or ""),
        })

    def trace_context(self, task_type: Optional[str], source_sizes: Dict[str, int], total: int, budget: int):
        """Log per-source sizes of an assembled context."""
        if not self.enabled:
            return
        attributes: Dict[str, Any] = {
            "task_type": task_type or "default",
            "context_chars": total,
            "context_budget": budget,
        }
        attributes.update({f"chars.{name}": size for name, size in source_sizes.items()})
        self._set_current(attributes)

    def trace_section(self, brief_id: str, section: str, outcome: str):
        if not self.enabled:
            return
        self._set_current({"brief_id": brief_id, "section": section, "outcome": outcome})


# Global tracer instance
tracer = MLflowTracer()
