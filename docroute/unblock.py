"""Operator interventions on stuck workflows.

Each operation loads the whole workflow, mutates it through
:mod:`docroute.ledger` and writes it back as one unit, then appends an
activity entry. None of them is idempotent against stale reads: callers
re-read the workflow before retrying.

A missing workflow or step is a silent no-op (a ``not_found`` result, never an
exception); any operation on a completed workflow is reported as
``stale_state``.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional, Protocol

from . import ledger
from .activity import ActivityLog, ActivityType
from .constants import DEFAULT_PACKET_EXTENSION_DAYS
from .errors import ErrorKind, OperationResult
from .models import Participant, Workflow, WorkflowStep, as_utc, utcnow
from .persistence import WorkflowRepository, get_repository

logger = logging.getLogger(__name__)


class DeadlineObserver(Protocol):
    """Receives the new deadline so reminders can be rescheduled elsewhere."""

    async def deadline_changed(self, workflow: Workflow) -> None:
        ...


def _find_step(workflow: Workflow, step_index: int) -> Optional[WorkflowStep]:
    if 0 <= step_index < len(workflow.steps):
        return workflow.steps[step_index]
    return None


def _completed(workflow: Workflow) -> OperationResult:
    return OperationResult.fail(
        ErrorKind.STALE_STATE,
        "Workflow is already completed; no further intervention is possible",
        workflow_id=workflow.id,
    )


def _missing(what: str, workflow_id: str) -> OperationResult:
    logger.debug(f"{what} not found for workflow_id={workflow_id}; nothing to do")
    return OperationResult.fail(ErrorKind.NOT_FOUND, f"{what} not found", workflow_id=workflow_id)


class UnblockService:
    """Reassign, skip, extend or cancel in-flight workflows."""

    def __init__(
        self,
        repository: WorkflowRepository | None = None,
        deadline_observer: DeadlineObserver | None = None,
    ) -> None:
        self._repository = repository or get_repository()
        self._activity = ActivityLog(self._repository)
        self._deadline_observer = deadline_observer

    async def reassign_step(
        self, workflow_id: str, step_index: int, new_participant: Participant
    ) -> OperationResult:
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            return _missing("Workflow", workflow_id)
        step = _find_step(workflow, step_index)
        if step is None:
            return _missing("Step", workflow_id)
        if workflow.is_completed:
            return _completed(workflow)
        if step.is_terminal:
            return OperationResult.fail(
                ErrorKind.STALE_STATE,
                f"Step {step.order} is already {step.status.value}",
                workflow_id=workflow_id,
            )

        previous = ledger.reassign(workflow, step_index, new_participant)
        await self._repository.save_workflow(workflow)

        await self._activity.record(
            ActivityType.STEP_REASSIGNED,
            f"Step {step.order} reassigned from {previous.name} to {new_participant.name}",
            document_id=workflow.document_id,
            workflow_id=workflow_id,
            step_index=step_index,
            previous_email=previous.email,
            new_email=new_participant.email,
        )
        logger.info(
            f"Reassigned step {step.order} of workflow_id={workflow_id} to {new_participant.email}"
        )
        return OperationResult.ok(
            f"Step {step.order} reassigned to {new_participant.name}", workflow_id=workflow_id
        )

    async def skip_step(self, workflow_id: str, step_index: int, reason: str) -> OperationResult:
        if not reason or not reason.strip():
            return OperationResult.fail(
                ErrorKind.INVALID_INPUT, "A reason is required to skip a step", workflow_id=workflow_id
            )

        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            return _missing("Workflow", workflow_id)
        step = _find_step(workflow, step_index)
        if step is None:
            return _missing("Step", workflow_id)
        if workflow.is_completed:
            return _completed(workflow)
        if step_index != workflow.current_step_index or not step.is_open:
            return OperationResult.fail(
                ErrorKind.STALE_STATE,
                f"Step {step.order} is not the active step (current is "
                f"{workflow.current_step_index + 1})",
                workflow_id=workflow_id,
            )

        document_status = ledger.skip(workflow, step_index, reason)
        await self._repository.save_workflow(workflow, document_status=document_status)

        await self._activity.record(
            ActivityType.STEP_SKIPPED,
            f"Step {step.order} skipped ({step.participant.name}): {reason}",
            document_id=workflow.document_id,
            workflow_id=workflow_id,
            step_index=step_index,
            reason=reason,
        )
        if workflow.is_completed:
            await self._activity.record(
                ActivityType.WORKFLOW_COMPLETED,
                "Workflow completed after skipping the last step",
                document_id=workflow.document_id,
                workflow_id=workflow_id,
            )
        return OperationResult.ok(
            f"Step {step.order} skipped",
            workflow_id=workflow_id,
            completed=workflow.is_completed,
            current_step_index=workflow.current_step_index,
        )

    async def extend_deadline(self, workflow_id: str, new_deadline: datetime) -> OperationResult:
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            return _missing("Workflow", workflow_id)
        if workflow.is_completed:
            return _completed(workflow)

        previous = workflow.deadline
        workflow.deadline = as_utc(new_deadline)
        await self._repository.save_workflow(workflow)

        if self._deadline_observer is not None:
            await self._deadline_observer.deadline_changed(workflow)

        await self._activity.record(
            ActivityType.DEADLINE_EXTENDED,
            f"Deadline moved to {workflow.deadline.date().isoformat()}",
            document_id=workflow.document_id,
            workflow_id=workflow_id,
            previous_deadline=previous.isoformat() if previous else None,
            new_deadline=workflow.deadline.isoformat(),
        )
        return OperationResult.ok(
            "Deadline extended", workflow_id=workflow_id, deadline=workflow.deadline.isoformat()
        )

    async def cancel_workflow(self, workflow_id: str, reason: Optional[str] = None) -> OperationResult:
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            return _missing("Workflow", workflow_id)
        if workflow.is_completed:
            return _completed(workflow)

        document_status = ledger.cancel(workflow, reason)
        cancelled = [
            i for i in range(len(workflow.steps)) if workflow.is_step_cancelled(i)
        ]
        await self._repository.save_workflow(workflow, document_status=document_status)

        await self._activity.record(
            ActivityType.WORKFLOW_CANCELLED,
            f"Workflow cancelled{': ' + reason if reason else ''}",
            document_id=workflow.document_id,
            workflow_id=workflow_id,
            reason=reason,
        )
        logger.info(f"Cancelled workflow_id={workflow_id}")
        return OperationResult.ok(
            "Workflow cancelled", workflow_id=workflow_id, cancelled_step_indexes=cancelled
        )

    async def extend_packet_expiration(
        self,
        workflow_id: str,
        step_index: int,
        additional_days: int = DEFAULT_PACKET_EXTENSION_DAYS,
    ) -> OperationResult:
        """Push back the expiry of the package issued for a step."""
        if additional_days <= 0:
            return OperationResult.fail(
                ErrorKind.INVALID_INPUT, "Extension must be at least one day", workflow_id=workflow_id
            )
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            return _missing("Workflow", workflow_id)
        step = _find_step(workflow, step_index)
        if step is None:
            return _missing("Step", workflow_id)
        if workflow.is_completed:
            return _completed(workflow)

        packet = step.packet
        if packet is None or packet.expires_at is None:
            return OperationResult.fail(
                ErrorKind.INVALID_INPUT,
                f"No package expiration is configured for step {step.order}",
                workflow_id=workflow_id,
            )
        if packet.extension_count >= packet.max_extensions:
            return OperationResult.fail(
                ErrorKind.INVALID_INPUT,
                f"Maximum number of extensions reached ({packet.max_extensions})",
                workflow_id=workflow_id,
            )

        packet.expires_at = packet.expires_at + timedelta(days=additional_days)
        packet.extension_count += 1
        packet.last_extended_at = utcnow()
        await self._repository.save_workflow(workflow)

        await self._activity.record(
            ActivityType.PACKET_EXTENDED,
            f"Package extended by {additional_days} days for {step.participant.name}",
            document_id=workflow.document_id,
            workflow_id=workflow_id,
            step_index=step_index,
            additional_days=additional_days,
            new_expires_at=packet.expires_at.isoformat(),
        )
        return OperationResult.ok(
            "Package expiration extended",
            workflow_id=workflow_id,
            expires_at=packet.expires_at.isoformat(),
        )
