"""Brief section lifecycle.

Transitions are pure functions of (section, event, now). The repository
applies them under a compare-and-swap precondition on the section's
updated_at, so concurrent runs on different sections never conflict.

    IDLE -> IN_PROGRESS -> COMPLETE | FAILED
    COMPLETE | FAILED -> IN_PROGRESS   (new run, new input hash)
"""

import hashlib
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence, Union

from ..schemas.brief import BriefSection, BriefSectionName, SectionStatus, compute_overall_status


@dataclass(frozen=True)
class Start:
    input_hash: Optional[str] = None


@dataclass(frozen=True)
class Complete:
    data: Dict[str, Any]


@dataclass(frozen=True)
class Fail:
    error: str


SectionEvent = Union[Start, Complete, Fail]


def new_section(now: str) -> BriefSection:
    return BriefSection(status=SectionStatus.IDLE, updated_at=now)


def apply_event(section: BriefSection, event: SectionEvent, now: str) -> BriefSection:
    if isinstance(event, Start):
        return section.model_copy(update={
            "status": SectionStatus.IN_PROGRESS,
            "updated_at": now,
            "input_hash": event.input_hash,
        })
    if isinstance(event, Complete):
        return section.model_copy(update={
            "status": SectionStatus.COMPLETE,
            "updated_at": now,
            "data": event.data,
            "error": None,
        })
    if isinstance(event, Fail):
        # data from an earlier successful run stays readable
        return section.model_copy(update={
            "status": SectionStatus.FAILED,
            "updated_at": now,
            "error": event.error,
        })
    raise TypeError(f"Unknown section event: {event!r}")


def is_noop(section: BriefSection, event: SectionEvent) -> bool:
    """True when applying `event` would not change anything worth writing."""
    return (
        isinstance(event, Complete)
        and section.status == SectionStatus.COMPLETE
        and section.data == event.data
    )


def build_section_input_hash(
    brief_id: str,
    section: Union[BriefSectionName, str],
    opportunity_id: str,
    source_keys: Sequence[str],
) -> str:
    """Stable hash of the causal inputs of one section run; key order does not matter."""
    name = BriefSectionName(section).value
    keys = ",".join(sorted(k for k in source_keys if k))
    return hashlib.sha256(f"{brief_id}:{name}:{opportunity_id}:{keys}".encode("utf-8")).hexdigest()


def should_skip(section: Optional[BriefSection], input_hash: str) -> bool:
    return (
        section is not None
        and section.status == SectionStatus.COMPLETE
        and section.input_hash == input_hash
    )


def normalize_error(error: Union[BaseException, str], limit: int = 1000) -> str:
    if isinstance(error, BaseException):
        message = f"{type(error).__name__}: {error}"
    else:
        message = str(error)
    message = " ".join(message.split())
    return message[:limit]
