"""Pydantic schemas for the executive opportunity brief.

A Brief aggregates seven BriefSections. Each section carries its own status,
the inputHash of the run that last touched it, and the validated payload of
its last successful run.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional, Union
from pydantic import BaseModel, Field, model_validator


class BriefSectionName(str, Enum):
    SUMMARY = "summary"
    DEADLINES = "deadlines"
    REQUIREMENTS = "requirements"
    CONTACTS = "contacts"
    RISKS = "risks"
    PAST_PERFORMANCE = "past_performance"
    SCORING = "scoring"


class SectionStatus(str, Enum):
    IDLE = "IDLE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


class BriefSection(BaseModel):
    status: SectionStatus = SectionStatus.IDLE
    updated_at: str
    input_hash: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


def compute_overall_status(statuses: Iterable[Union[SectionStatus, BriefSection]]) -> SectionStatus:
    """FAILED if any section failed, COMPLETE if all are, IN_PROGRESS if any runs, else IDLE."""
    values = [s.status if isinstance(s, BriefSection) else SectionStatus(s) for s in statuses]
    if not values:
        return SectionStatus.IDLE
    if any(s == SectionStatus.FAILED for s in values):
        return SectionStatus.FAILED
    if all(s == SectionStatus.COMPLETE for s in values):
        return SectionStatus.COMPLETE
    if any(s == SectionStatus.IN_PROGRESS for s in values):
        return SectionStatus.IN_PROGRESS
    return SectionStatus.IDLE


class Brief(BaseModel):
    id: str
    project_id: str
    opportunity_id: str
    org_id: str
    source_keys: List[str] = Field(default_factory=list)
    sections: Dict[BriefSectionName, BriefSection] = Field(default_factory=dict)
    composite_score: Optional[float] = None
    decision: Optional[str] = None
    recommendation: Optional[str] = None
    confidence: Optional[float] = None
    status: SectionStatus = SectionStatus.IDLE
    created_at: str
    updated_at: str

    @model_validator(mode="after")
    def derive_status(self) -> "Brief":
        self.status = compute_overall_status(self.section_statuses().values())
        return self

    def section_statuses(self) -> Dict[BriefSectionName, SectionStatus]:
        # A section missing from an older brief counts as IDLE
        return {
            name: self.sections[name].status if name in self.sections else SectionStatus.IDLE
            for name in BriefSectionName
        }

    def section(self, name: BriefSectionName) -> Optional[BriefSection]:
        return self.sections.get(BriefSectionName(name))

    def section_data(self, name: BriefSectionName) -> Optional[Dict[str, Any]]:
        """Payload of a section, only when that section is COMPLETE."""
        sec = self.section(name)
        if sec is None or sec.status != SectionStatus.COMPLETE:
            return None
        return sec.data


class SectionJob(BaseModel):
    """One brief-section trigger, as delivered by the workflow transport."""
    org_id: str = Field(..., min_length=1)
    brief_id: str = Field(..., min_length=1)
    section: BriefSectionName
    input_hash: Optional[str] = None
    top_k: Optional[int] = Field(None, ge=1, le=100)


# --- Section payloads -------------------------------------------------------

class SummarySection(BaseModel):
    title: Optional[str] = None
    agency: Optional[str] = None
    office: Optional[str] = None
    solicitation_number: Optional[str] = None
    naics: Optional[str] = None
    contract_type: Optional[str] = None
    set_aside: Optional[str] = None
    place_of_performance: Optional[str] = None
    estimated_value_usd: Optional[float] = None
    summary: str = Field(..., min_length=1)


class Deadline(BaseModel):
    type: str
    label: Optional[str] = None
    date_time_iso: Optional[str] = None
    raw_text: Optional[str] = None


class DeadlinesSection(BaseModel):
    submission_deadline_iso: Optional[str] = None
    has_submission_deadline: bool = False
    deadlines: List[Deadline] = Field(default_factory=list)

    @model_validator(mode="after")
    def derive_submission_flag(self) -> "DeadlinesSection":
        if self.submission_deadline_iso:
            self.has_submission_deadline = True
        return self


class Requirement(BaseModel):
    requirement: str
    must_have: bool = False
    category: Optional[str] = None


class RequirementsSection(BaseModel):
    overview: Optional[str] = None
    requirements: List[Requirement] = Field(default_factory=list)
    deliverables: List[str] = Field(default_factory=list)
    evaluation_factors: List[str] = Field(default_factory=list)


class Contact(BaseModel):
    role: Optional[str] = None
    name: Optional[str] = None
    title: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class ContactsSection(BaseModel):
    contacts: List[Contact] = Field(default_factory=list)
    missing_recommended_roles: List[str] = Field(default_factory=list)


Severity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]


class RiskFlag(BaseModel):
    severity: Severity = "MEDIUM"
    flag: str
    mitigation: Optional[str] = None


class IncumbentInfo(BaseModel):
    known_incumbent: bool = False
    incumbent_name: Optional[str] = None


class RisksSection(BaseModel):
    risks: List[RiskFlag] = Field(default_factory=list)
    red_flags: List[RiskFlag] = Field(default_factory=list)
    incumbent_info: Optional[IncumbentInfo] = None


class PastPerformanceMatch(BaseModel):
    project_id: Optional[str] = None
    title: str
    client: Optional[str] = None
    description: Optional[str] = None
    relevance_score: int = Field(0, ge=0, le=100)
    rationale: Optional[str] = None


class PastPerformanceSection(BaseModel):
    matches: List[PastPerformanceMatch] = Field(default_factory=list)
    overall_coverage: Optional[int] = Field(None, ge=0, le=100)
    critical_gaps: List[str] = Field(default_factory=list)


CriterionName = Literal[
    "TECHNICAL_FIT",
    "PAST_PERFORMANCE_RELEVANCE",
    "PRICING_POSITION",
    "STRATEGIC_ALIGNMENT",
    "INCUMBENT_RISK",
]


class ScoringCriterion(BaseModel):
    name: CriterionName
    score: int = Field(..., ge=1, le=5)
    rationale: str = Field(..., min_length=10)
    gaps: List[str] = Field(default_factory=list)


class ScoringSection(BaseModel):
    criteria: List[ScoringCriterion] = Field(..., min_length=5, max_length=5)
    composite_score: Optional[float] = None
    recommendation: Literal["GO", "NO_GO", "NEEDS_REVIEW"] = "NEEDS_REVIEW"
    decision: Optional[Literal["GO", "CONDITIONAL_GO", "NO_GO"]] = None
    confidence: int = Field(..., ge=0, le=100)
    summary_justification: str = Field(..., min_length=20)
    blockers: List[str] = Field(default_factory=list)
    required_actions: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_criteria(self) -> "ScoringSection":
        names = [c.name for c in self.criteria]
        if len(set(names)) != len(names):
            raise ValueError(f"criteria names must be unique -> {names!r}")
        return self


SECTION_SCHEMAS: Dict[BriefSectionName, type] = {
    BriefSectionName.SUMMARY: SummarySection,
    BriefSectionName.DEADLINES: DeadlinesSection,
    BriefSectionName.REQUIREMENTS: RequirementsSection,
    BriefSectionName.CONTACTS: ContactsSection,
    BriefSectionName.RISKS: RisksSection,
    BriefSectionName.PAST_PERFORMANCE: PastPerformanceSection,
    BriefSectionName.SCORING: ScoringSection,
}
