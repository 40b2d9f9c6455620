"""Domain models for routed documents, workflows and their steps."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Timezone-aware current time used for every ledger timestamp."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def new_id() -> str:
    return str(uuid.uuid4())


class CamelModel(BaseModel):
    """Base model whose JSON form uses the camelCase names of the artifacts."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @field_validator("*", mode="after")
    @classmethod
    def _naive_datetimes_are_utc(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return as_utc(value)
        return value


class ParticipantRole(str, Enum):
    REVIEWER = "reviewer"
    VALIDATOR = "validator"
    APPROVER = "approver"
    SIGNER = "signer"


class StepStatus(str, Enum):
    WAITING = "waiting"
    PENDING = "pending"
    SENT = "sent"
    COMPLETED = "completed"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    CORRECTION_REQUESTED = "correction_requested"


OPEN_STEP_STATUSES = frozenset(
    {StepStatus.PENDING, StepStatus.SENT, StepStatus.CORRECTION_REQUESTED}
)
TERMINAL_STEP_STATUSES = frozenset(
    {StepStatus.COMPLETED, StepStatus.REJECTED, StepStatus.SKIPPED}
)


class StepDecision(str, Enum):
    APPROVED = "approved"
    VALIDATED = "validated"
    REVIEWED = "reviewed"
    REJECTED = "rejected"
    MODIFICATION_REQUESTED = "modification_requested"


ACCEPT_DECISIONS = frozenset(
    {StepDecision.APPROVED, StepDecision.VALIDATED, StepDecision.REVIEWED}
)


class RejectionCategory(str, Enum):
    INCOMPLETE = "incomplete"
    INCORRECT = "incorrect"
    NON_COMPLIANT = "non_compliant"
    MISSING_DOCUMENTS = "missing_documents"
    UNAUTHORIZED = "unauthorized"
    OTHER = "other"


class DocumentType(str, Enum):
    PDF = "pdf"
    WORD = "word"
    EXCEL = "excel"
    POWERPOINT = "powerpoint"
    IMAGE = "image"
    TEXT = "text"
    OTHER = "other"


class DocumentStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    ARCHIVED = "archived"


# ---------------------------------------------------------------------------
# Participants and decision payloads


class Participant(CamelModel):
    """A person assigned to a step."""

    name: str
    email: str
    organization: Optional[str] = None


class ParticipantRecord(Participant):
    """Directory entry for a participant, including absence information."""

    id: str = Field(default_factory=new_id)
    roles: List[ParticipantRole] = Field(default_factory=list)
    is_absent: bool = False
    absence_start: Optional[datetime] = None
    absence_end: Optional[datetime] = None
    substitute_email: Optional[str] = None

    def is_absent_at(self, when: datetime) -> bool:
        """Return ``True`` if the absence window covers ``when``."""
        if not self.is_absent:
            return False
        if self.absence_start is not None and when < self.absence_start:
            return False
        if self.absence_end is not None and when > self.absence_end:
            return False
        return True

    def as_participant(self) -> Participant:
        return Participant(
            name=self.name, email=self.email, organization=self.organization
        )


class RejectionDetails(CamelModel):
    category: RejectionCategory = RejectionCategory.OTHER
    reason: str = ""


class AnnotationPosition(CamelModel):
    page: int
    x: float
    y: float
    width: Optional[float] = None
    height: Optional[float] = None


class Annotation(CamelModel):
    """Comment, highlight or pin placed on the document by a participant."""

    id: str = Field(default_factory=new_id)
    step_id: str
    participant_name: str
    participant_role: ParticipantRole
    type: Literal["comment", "highlight", "pin"] = "comment"
    content: str = ""
    position: AnnotationPosition
    color: str = "#3b82f6"
    created_at: datetime = Field(default_factory=utcnow)
    reply_to: Optional[str] = None


class SignatureMetadata(CamelModel):
    participant_name: str
    participant_email: str
    user_agent: Optional[str] = None


class PlacementPoint(CamelModel):
    x: float
    y: float


class SignatureData(CamelModel):
    """Signature image captured by the offline viewer."""

    image: str
    timestamp: datetime
    hash: str
    metadata: SignatureMetadata
    position: Optional[PlacementPoint] = None
    source: Optional[Literal["draw", "import", "saved"]] = None


class InitialsData(SignatureData):
    apply_to_all_pages: bool = False


class StepResponse(CamelModel):
    """Decision recorded for a step once its participant has acted."""

    decision: StepDecision
    annotations: List[Annotation] = Field(default_factory=list)
    general_comment: Optional[str] = None
    signature: Optional[SignatureData] = None
    initials: Optional[InitialsData] = None
    rejection_details: Optional[RejectionDetails] = None
    completed_at: datetime = Field(default_factory=utcnow)
    submission_hash: Optional[str] = None


class CorrectionRequest(CamelModel):
    """One iteration of a correction loop on a step."""

    number: int
    requested_by: Participant
    category: RejectionCategory = RejectionCategory.OTHER
    reason: str = ""
    requested_at: datetime = Field(default_factory=utcnow)
    resubmitted_at: Optional[datetime] = None
    resubmission_note: Optional[str] = None
    response: Optional[StepResponse] = None


class PacketRecord(CamelModel):
    """Metadata of the last package issued for a step."""

    package_id: str
    generated_at: datetime
    document_hash: str
    chain_hash: str
    expires_at: Optional[datetime] = None
    extension_count: int = 0
    max_extensions: int = 2
    last_extended_at: Optional[datetime] = None

    def is_expired(self, when: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (when or utcnow()) > self.expires_at

    def time_remaining(self, when: Optional[datetime] = None) -> Optional[timedelta]:
        if self.expires_at is None:
            return None
        return max(self.expires_at - (when or utcnow()), timedelta(0))


# ---------------------------------------------------------------------------
# Workflow aggregate


class WorkflowStep(CamelModel):
    """One participant's turn in a workflow."""

    id: str = Field(default_factory=new_id)
    order: int
    participant: Participant
    role: ParticipantRole
    status: StepStatus = StepStatus.WAITING
    instructions: Optional[str] = None
    sent_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    skipped_at: Optional[datetime] = None
    skipped_reason: Optional[str] = None
    reassigned_from: Optional[Participant] = None
    response: Optional[StepResponse] = None
    correction_history: List[CorrectionRequest] = Field(default_factory=list)
    correction_count: int = 0
    packet: Optional[PacketRecord] = None

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STEP_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STEP_STATUSES


class Workflow(CamelModel):
    """A document in flight and the ordered steps it must pass through.

    Steps are only ever mutated through :mod:`docroute.ledger`, which keeps
    the single-open-step invariant intact.
    """

    id: str = Field(default_factory=new_id)
    document_id: str
    name: str
    owner: Participant
    steps: List[WorkflowStep] = Field(default_factory=list)
    current_step_index: int = 0
    deadline: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    awaiting_correction: bool = False
    correction_step_index: Optional[int] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @property
    def current_step(self) -> Optional[WorkflowStep]:
        if 0 <= self.current_step_index < len(self.steps):
            return self.steps[self.current_step_index]
        return None

    def step_index(self, step_id: str) -> Optional[int]:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        return None

    def is_step_cancelled(self, index: int) -> bool:
        """Derived status: a step left unfinished by a terminated workflow."""
        if not self.is_completed:
            return False
        status = self.steps[index].status
        return status not in TERMINAL_STEP_STATUSES

    def rejected_step_index(self) -> Optional[int]:
        for index, step in enumerate(self.steps):
            if step.status == StepStatus.REJECTED:
                return index
        return None

    def open_step_indexes(self) -> List[int]:
        return [i for i, step in enumerate(self.steps) if step.is_open]


class Document(CamelModel):
    """Document routed through a workflow; content is text or a data URL."""

    id: str = Field(default_factory=new_id)
    name: str
    type: DocumentType = DocumentType.OTHER
    mime_type: str = "application/octet-stream"
    content: Optional[str] = None
    preview_content: Optional[str] = None
    size: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    status: DocumentStatus = DocumentStatus.DRAFT
    workflow_id: Optional[str] = None


class TemplateStep(CamelModel):
    """Reusable step definition; the participant may be filled in at use time."""

    role: ParticipantRole
    participant: Optional[Participant] = None
    instructions: Optional[str] = None


class WorkflowTemplate(CamelModel):
    """Named, reusable list of steps for creating workflows."""

    id: str = Field(default_factory=new_id)
    name: str
    description: Optional[str] = None
    steps: List[TemplateStep] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    usage_count: int = 0
