"""Detection of workflows stalled on an absent participant or a passed deadline."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .constants import PACKET_EXPIRY_WARNING_HOURS, UPCOMING_DEADLINE_DAYS
from .models import DocumentStatus, Participant, StepStatus, as_utc, utcnow
from .persistence import WorkflowRepository, get_repository

logger = logging.getLogger(__name__)


class BlockedWorkflowInfo(BaseModel):
    """Why a workflow is stuck and who could unblock it."""

    workflow_id: str
    document_id: str
    document_name: str
    workflow_name: str
    blocked_step_index: int
    blocked_participant: Participant
    blocked_since: datetime
    reason: Literal["absent", "overdue"]
    substitute_available: Optional[Participant] = None


class PacketAttention(BaseModel):
    """A package still out with its participant and close to (or past) expiry."""

    workflow_id: str
    workflow_name: str
    step_index: int
    participant: Participant
    expires_at: datetime
    time_remaining: timedelta


class UpcomingDeadline(BaseModel):
    workflow_id: str
    workflow_name: str
    document_name: str
    deadline: datetime
    days_remaining: int


class AttentionReport(BaseModel):
    expiring_soon: List[PacketAttention] = Field(default_factory=list)
    expired: List[PacketAttention] = Field(default_factory=list)
    upcoming_deadlines: List[UpcomingDeadline] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.expiring_soon or self.expired or self.upcoming_deadlines)


class BlockageDetector:
    """Read-only scan over open workflows.

    The scan works on a snapshot taken at call time and never writes, so it
    may run alongside mutations; results can lag a concurrent write by one call.
    """

    def __init__(self, repository: WorkflowRepository | None = None) -> None:
        self._repository = repository or get_repository()

    async def detect_blocked_workflows(
        self, now: Optional[datetime] = None
    ) -> list[BlockedWorkflowInfo]:
        now = as_utc(now) if now else utcnow()
        workflows = await self._repository.list_open_workflows()
        documents = {doc.id: doc for doc in await self._repository.list_documents()}
        participants = {p.email: p for p in await self._repository.list_participants()}

        blocked: list[BlockedWorkflowInfo] = []
        for workflow in workflows:
            if workflow.is_completed:
                continue
            doc = documents.get(workflow.document_id)
            if doc is None or doc.status != DocumentStatus.IN_PROGRESS:
                continue
            step = workflow.current_step
            if step is None or step.is_terminal:
                continue

            blocked_since = step.sent_at or workflow.created_at
            record = participants.get(step.participant.email)

            if record is not None and record.is_absent_at(now):
                substitute = (
                    participants.get(record.substitute_email)
                    if record.substitute_email
                    else None
                )
                blocked.append(
                    BlockedWorkflowInfo(
                        workflow_id=workflow.id,
                        document_id=workflow.document_id,
                        document_name=doc.name,
                        workflow_name=workflow.name,
                        blocked_step_index=workflow.current_step_index,
                        blocked_participant=step.participant,
                        blocked_since=blocked_since,
                        reason="absent",
                        substitute_available=substitute.as_participant() if substitute else None,
                    )
                )
                continue

            if workflow.deadline is not None and now > workflow.deadline:
                blocked.append(
                    BlockedWorkflowInfo(
                        workflow_id=workflow.id,
                        document_id=workflow.document_id,
                        document_name=doc.name,
                        workflow_name=workflow.name,
                        blocked_step_index=workflow.current_step_index,
                        blocked_participant=step.participant,
                        blocked_since=blocked_since,
                        reason="overdue",
                    )
                )

        if blocked:
            logger.info(f"Detected {len(blocked)} blocked workflow(s)")
        return blocked

    async def upcoming_deadlines(
        self, days: int = UPCOMING_DEADLINE_DAYS, now: Optional[datetime] = None
    ) -> list[UpcomingDeadline]:
        """Open workflows whose deadline falls within ``days``, soonest first.

        Deadlines already passed are included with a negative day count.
        """
        now = as_utc(now) if now else utcnow()
        limit = now + timedelta(days=days)
        documents = {doc.id: doc for doc in await self._repository.list_documents()}

        upcoming: list[UpcomingDeadline] = []
        for workflow in await self._repository.list_open_workflows():
            if workflow.is_completed or workflow.deadline is None or workflow.deadline > limit:
                continue
            doc = documents.get(workflow.document_id)
            remaining = (workflow.deadline - now) / timedelta(days=1)
            upcoming.append(
                UpcomingDeadline(
                    workflow_id=workflow.id,
                    workflow_name=workflow.name,
                    document_name=doc.name if doc else "unknown document",
                    deadline=workflow.deadline,
                    days_remaining=math.ceil(remaining),
                )
            )
        return sorted(upcoming, key=lambda item: item.deadline)

    async def steps_needing_attention(
        self,
        within: timedelta = timedelta(hours=PACKET_EXPIRY_WARNING_HOURS),
        deadline_days: int = UPCOMING_DEADLINE_DAYS,
        now: Optional[datetime] = None,
    ) -> AttentionReport:
        """Packages about to expire or expired, plus deadlines coming up.

        Only steps whose package is out with the participant (``sent``) are
        considered; a step parked on a correction waits on the owner instead.
        """
        now = as_utc(now) if now else utcnow()
        report = AttentionReport(
            upcoming_deadlines=await self.upcoming_deadlines(deadline_days, now=now)
        )

        for workflow in await self._repository.list_open_workflows():
            if workflow.is_completed:
                continue
            for index, step in enumerate(workflow.steps):
                packet = step.packet
                if step.status != StepStatus.SENT or packet is None or packet.expires_at is None:
                    continue
                entry = PacketAttention(
                    workflow_id=workflow.id,
                    workflow_name=workflow.name,
                    step_index=index,
                    participant=step.participant,
                    expires_at=packet.expires_at,
                    time_remaining=packet.time_remaining(now),
                )
                if packet.is_expired(now):
                    report.expired.append(entry)
                elif packet.expires_at - now <= within:
                    report.expiring_soon.append(entry)

        report.expiring_soon.sort(key=lambda item: item.expires_at)
        if not report.is_empty:
            logger.info(
                f"{len(report.expired)} expired and {len(report.expiring_soon)} expiring "
                f"package(s), {len(report.upcoming_deadlines)} upcoming deadline(s)"
            )
        return report
