"""Repository for executive briefs.

Every section write is one atomic, path-scoped update of `sections.<name>`
guarded by the section's current updated_at. A stale guard means another
writer touched the same section in between: re-read and re-apply.

The brief-level status is rewritten from the section statuses in the same
update and derived again on every read, so a write racing a different section
cannot leave a stale status visible.
"""

from typing import Any, Dict, List, Mapping, Optional

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..errors import BriefNotFoundError, ConditionalWriteFailedError, SectionNotFoundError
from ..log import get_logger
from ..schemas.brief import Brief, BriefSectionName
from ..store.answers import now_iso
from ..store.db import DocumentStore, Equals, Exists, IfNotExists, NotExists
from ..store.keys import brief_id_for, brief_key
from .state import (
    Complete,
    Fail,
    SectionEvent,
    Start,
    apply_event,
    compute_overall_status,
    is_noop,
    new_section,
    normalize_error,
)

logger = get_logger("brief")

ROLLUP_FIELDS = ("composite_score", "decision", "recommendation", "confidence")

_cas_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_fixed(0.05),
    retry=retry_if_exception_type(ConditionalWriteFailedError),
    reraise=True,
)


def _section_path(section: BriefSectionName) -> str:
    return f"sections.{BriefSectionName(section).value}"


class BriefRepo:
    def __init__(self, documents: DocumentStore):
        self.documents = documents

    async def create_brief(
        self,
        org_id: str,
        project_id: str,
        opportunity_id: str,
        source_keys: Optional[List[str]] = None,
    ) -> Brief:
        """Create the brief with every section IDLE; returns the existing one if already there."""
        brief_id = brief_id_for(project_id, opportunity_id)
        now = now_iso()
        brief = Brief(
            id=brief_id,
            project_id=project_id,
            opportunity_id=opportunity_id,
            org_id=org_id,
            source_keys=list(source_keys or []),
            sections={name: new_section(now) for name in BriefSectionName},
            created_at=now,
            updated_at=now,
        )
        try:
            await self.documents.put(brief_key(brief_id), brief.model_dump(mode="json"), conditions=[NotExists()])
            logger.info(f"Created brief {brief_id}")
            return brief
        except ConditionalWriteFailedError:
            logger.info(f"Brief {brief_id} already exists")
            return await self.get_brief(brief_id)

    async def get_brief(self, brief_id: str) -> Brief:
        item = await self.documents.get(brief_key(brief_id))
        if item is None:
            raise BriefNotFoundError(brief_id)
        return Brief.model_validate(item)

    async def mark_in_progress(self, brief_id: str, section: BriefSectionName, input_hash: Optional[str]) -> Brief:
        section = BriefSectionName(section)
        # Back-fill sections added after the brief was created
        try:
            await self.documents.update(
                brief_key(brief_id),
                set_values={_section_path(section): IfNotExists(new_section(now_iso()).model_dump(mode="json"))},
                conditions=[Exists()],
            )
        except ConditionalWriteFailedError:
            raise BriefNotFoundError(brief_id)

        brief = await self._transition(brief_id, section, Start(input_hash))
        logger.info(f"[{brief_id}] {section.value} -> IN_PROGRESS")
        return brief

    async def mark_complete(
        self,
        brief_id: str,
        section: BriefSectionName,
        data: Dict[str, Any],
        top_level_patch: Optional[Mapping[str, Any]] = None,
    ) -> Brief:
        """
        Write COMPLETE and the payload. Roll-up fields in `top_level_patch`
        land in the same atomic update as the section itself.
        """
        section = BriefSectionName(section)
        patch = dict(top_level_patch or {})
        unknown = set(patch) - set(ROLLUP_FIELDS)
        if unknown:
            raise ValueError(f"Not brief roll-up fields: {sorted(unknown)}")

        brief = await self._transition(brief_id, section, Complete(data), patch)
        logger.info(f"[{brief_id}] {section.value} -> COMPLETE")
        return brief

    async def mark_failed(self, brief_id: str, section: BriefSectionName, error: Any) -> Brief:
        section = BriefSectionName(section)
        message = normalize_error(error)
        brief = await self._transition(brief_id, section, Fail(message))
        logger.info(f"[{brief_id}] {section.value} -> FAILED ({message})")
        return brief

    @_cas_retry
    async def _transition(
        self,
        brief_id: str,
        section: BriefSectionName,
        event: SectionEvent,
        top_level_patch: Optional[Mapping[str, Any]] = None,
    ) -> Brief:
        brief = await self.get_brief(brief_id)
        current = brief.section(section)
        if current is None:
            raise SectionNotFoundError(brief_id, section.value)

        patch = dict(top_level_patch or {})
        if is_noop(current, event) and all(getattr(brief, k) == v for k, v in patch.items()):
            logger.info(f"[{brief_id}] {section.value} already COMPLETE with identical data")
            return brief

        now = now_iso()
        path = _section_path(section)
        updated = apply_event(current, event, now)
        set_values: Dict[str, Any] = {path: updated.model_dump(mode="json"), "updated_at": now}
        statuses = brief.section_statuses()
        statuses[section] = updated.status
        set_values["status"] = compute_overall_status(statuses.values()).value
        set_values.update(patch)

        try:
            stored = await self.documents.update(
                brief_key(brief_id),
                set_values=set_values,
                conditions=[Equals(f"{path}.updated_at", current.updated_at)],
            )
        except ConditionalWriteFailedError:
            logger.warning(f"[{brief_id}] {section.value} changed concurrently; re-reading")
            raise
        return Brief.model_validate(stored)
