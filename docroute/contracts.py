"""Wire contracts exchanged with the offline viewer.

``PackageData`` travels out to a participant; ``ReturnFileData`` comes back.
Both use camelCase JSON. A return artifact is untrusted input and is only ever
turned into ledger data by :mod:`docroute.returns` after validation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional

from pydantic import ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .constants import PACKAGE_FORMAT_VERSION
from .models import (
    Annotation,
    CamelModel,
    DocumentType,
    InitialsData,
    Participant,
    ParticipantRole,
    RejectionCategory,
    RejectionDetails,
    SignatureData,
    StepDecision,
    new_id,
    utcnow,
)

logger = logging.getLogger(__name__)


class PackageDocument(CamelModel):
    id: str
    name: str
    type: DocumentType
    content: Optional[str] = None
    preview_content: Optional[str] = None


class PackageWorkflowInfo(CamelModel):
    id: str
    total_steps: int
    current_step_index: int


class PackageStep(CamelModel):
    id: str
    order: int
    participant: Participant
    role: ParticipantRole
    instructions: Optional[str] = None


class PreviousStepSummary(CamelModel):
    """Read-only recap of a finished step shown to later participants."""

    step_number: int
    participant: Participant
    role: ParticipantRole
    completed_at: datetime
    decision: StepDecision
    general_comment: Optional[str] = None
    annotation_count: int = 0
    annotations: List[Annotation] = Field(default_factory=list)
    color: str


class NextStepInfo(CamelModel):
    participant: Participant
    role: ParticipantRole


class PackageSecurity(CamelModel):
    document_hash: str
    chain_hash: str
    last_validation_hash: Optional[str] = None
    is_locked_for_signature: bool = False


class PackageData(CamelModel):
    """Self-contained snapshot handed to the participant of one step."""

    version: str = PACKAGE_FORMAT_VERSION
    package_id: str = Field(default_factory=new_id)
    generated_at: datetime = Field(default_factory=utcnow)
    document: PackageDocument
    workflow: PackageWorkflowInfo
    current_step: PackageStep
    owner: Participant
    previous_steps: List[PreviousStepSummary] = Field(default_factory=list)
    all_annotations: List[Annotation] = Field(default_factory=list)
    next_step: Optional[NextStepInfo] = None
    security: PackageSecurity
    expires_at: Optional[datetime] = None

    def to_json(self, indent: Optional[int] = None) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=indent)

    @classmethod
    def from_json(cls, data: str | bytes) -> "PackageData":
        return cls.model_validate_json(data)


class ReturnFileData(CamelModel):
    """Decision artifact produced by the offline viewer.

    Only ``version``, ``workflowId``, ``stepId`` and ``decision`` are required;
    unknown keys are ignored so newer viewers stay readable.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    version: str = Field(min_length=1)
    workflow_id: str = Field(min_length=1)
    step_id: str = Field(min_length=1)
    decision: StepDecision
    package_id: Optional[str] = None
    document_id: Optional[str] = None
    participant: Optional[Participant] = None
    rejection_details: Optional[RejectionDetails] = None
    general_comment: Optional[str] = None
    annotations: List[Annotation] = Field(default_factory=list)
    signature: Optional[SignatureData] = None
    initials: Optional[InitialsData] = None
    completed_at: Optional[datetime] = None
    document_hash: Optional[str] = None
    chain_hash: Optional[str] = None

    @field_validator("rejection_details", mode="before")
    @classmethod
    def _normalize_rejection_details(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        category = value.get("category") or RejectionCategory.OTHER.value
        if category not in {c.value for c in RejectionCategory}:
            logger.debug(f"Unknown rejection category {category!r}, using 'other'")
            category = RejectionCategory.OTHER.value
        return {"category": category, "reason": value.get("reason") or ""}

    @field_validator("annotations", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value

    def to_json(self, indent: Optional[int] = None) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=indent)
