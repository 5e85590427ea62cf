"""Exception hierarchy for the answer and brief engines.

Each failure family gets its own type so callers can tell "nothing relevant"
from "the model failed" from "the brief does not exist".
"""

from typing import Optional


class CaptureEngineError(Exception):
    """Base class for all engine errors."""


class InvalidRequestError(CaptureEngineError):
    """Missing ids, empty question text, malformed job payload. Never retried."""


class NoMatchingContextError(CaptureEngineError):
    """No passage from any source cleared its relevance threshold."""

    def __init__(self, message: str = "No matching context found for this question"):
        super().__init__(message)


class ModelOutputError(CaptureEngineError):
    """
    The model answered but its output could not be used.
    `reason` is one of: empty, no_json, truncated, malformed, schema.
    `excerpt` carries the raw tail so truncation and prose wrapping can be told apart.
    """

    def __init__(self, reason: str, excerpt: str = "", detail: Optional[str] = None):
        self.reason = reason
        self.excerpt = excerpt
        self.detail = detail
        message = f"Unusable model output ({reason})"
        if detail:
            message += f": {detail}"
        if excerpt:
            message += f". End of response: ...{excerpt}"
        super().__init__(message)


class BriefNotFoundError(CaptureEngineError):
    def __init__(self, brief_id: str):
        self.brief_id = brief_id
        super().__init__(f"Executive brief not found: {brief_id}")


class SectionNotFoundError(CaptureEngineError):
    def __init__(self, brief_id: str, section: str):
        self.brief_id = brief_id
        self.section = section
        super().__init__(f"Section {section!r} not found on brief {brief_id}")


class ConditionalWriteFailedError(CaptureEngineError):
    """A conditional update's precondition did not hold."""

    def __init__(self, key: str, condition: Optional[object] = None):
        self.key = key
        self.condition = condition
        super().__init__(f"Conditional write failed for {key}: {condition!r}")


class MissingInputError(CaptureEngineError):
    """A brief section cannot run: no usable solicitation text, or prerequisite sections are not COMPLETE."""
