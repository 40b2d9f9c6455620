"""Step ledger state machine.

Every mutation of a workflow's steps goes through the functions in this
module. They operate on an in-memory workflow (the caller loads and saves the
whole aggregate) and return the document status the caller must persist in
the same write, if any. Impossible moves raise :class:`IllegalTransitionError`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from .errors import IllegalTransitionError
from .models import (
    CorrectionRequest,
    DocumentStatus,
    Participant,
    RejectionCategory,
    StepResponse,
    StepStatus,
    Workflow,
    WorkflowStep,
    utcnow,
)

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS: dict[StepStatus, set[StepStatus]] = {
    StepStatus.WAITING: {StepStatus.PENDING},
    StepStatus.PENDING: {StepStatus.SENT, StepStatus.SKIPPED},
    StepStatus.SENT: {
        StepStatus.COMPLETED,
        StepStatus.REJECTED,
        StepStatus.SKIPPED,
        StepStatus.CORRECTION_REQUESTED,
    },
    StepStatus.CORRECTION_REQUESTED: {StepStatus.SENT, StepStatus.SKIPPED},
    StepStatus.COMPLETED: set(),
    StepStatus.REJECTED: set(),
    StepStatus.SKIPPED: set(),
}


def transition_step(step: WorkflowStep, to: StepStatus) -> None:
    allowed = ALLOWED_TRANSITIONS.get(step.status, set())
    if to not in allowed:
        raise IllegalTransitionError(
            f"Illegal step transition: {step.status.value} -> {to.value} (step {step.order})"
        )
    step.status = to


def _require_open(workflow: Workflow) -> None:
    if workflow.is_completed:
        raise IllegalTransitionError(f"Workflow {workflow.id} is already completed")


def _require_current(workflow: Workflow, index: int) -> WorkflowStep:
    _require_open(workflow)
    if index != workflow.current_step_index:
        raise IllegalTransitionError(
            f"Step index {index} is not the current step "
            f"({workflow.current_step_index}) of workflow {workflow.id}"
        )
    return workflow.steps[index]


def _advance(workflow: Workflow, from_index: int, now: datetime) -> Optional[DocumentStatus]:
    next_index = from_index + 1
    if next_index < len(workflow.steps):
        workflow.current_step_index = next_index
        transition_step(workflow.steps[next_index], StepStatus.PENDING)
        return None
    workflow.completed_at = now
    logger.info(f"Workflow {workflow.id} completed")
    return DocumentStatus.COMPLETED


def start(workflow: Workflow) -> None:
    """Make the first step current; every later step stays ``waiting``."""
    if not workflow.steps:
        raise IllegalTransitionError("A workflow needs at least one step")
    workflow.current_step_index = 0
    transition_step(workflow.steps[0], StepStatus.PENDING)


def mark_sent(workflow: Workflow, index: int, now: Optional[datetime] = None) -> bool:
    """Move a ``pending`` current step to ``sent``; return whether it changed."""
    step = _require_current(workflow, index)
    if step.status != StepStatus.PENDING:
        return False
    transition_step(step, StepStatus.SENT)
    step.sent_at = now or utcnow()
    return True


def record_acceptance(
    workflow: Workflow, index: int, response: StepResponse, now: Optional[datetime] = None
) -> Optional[DocumentStatus]:
    now = now or utcnow()
    step = _require_current(workflow, index)
    transition_step(step, StepStatus.COMPLETED)
    step.response = response
    step.completed_at = now
    return _advance(workflow, index, now)


def record_rejection(
    workflow: Workflow, index: int, response: StepResponse, now: Optional[datetime] = None
) -> DocumentStatus:
    """Reject at ``index``; later steps are frozen in their current status."""
    now = now or utcnow()
    step = _require_current(workflow, index)
    transition_step(step, StepStatus.REJECTED)
    step.response = response
    step.completed_at = now
    workflow.completed_at = now
    workflow.awaiting_correction = False
    workflow.correction_step_index = None
    return DocumentStatus.REJECTED


def record_correction_request(
    workflow: Workflow, index: int, response: StepResponse, now: Optional[datetime] = None
) -> CorrectionRequest:
    """Park the workflow on ``index`` until the owner resubmits the document."""
    now = now or utcnow()
    step = _require_current(workflow, index)
    transition_step(step, StepStatus.CORRECTION_REQUESTED)
    step.response = response
    step.completed_at = now
    step.correction_count += 1

    details = response.rejection_details
    entry = CorrectionRequest(
        number=step.correction_count,
        requested_by=step.participant,
        category=details.category if details else RejectionCategory.OTHER,
        reason=(details.reason if details and details.reason else response.general_comment or ""),
        requested_at=now,
        response=response,
    )
    step.correction_history.append(entry)
    workflow.awaiting_correction = True
    workflow.correction_step_index = index
    return entry


def resubmit(
    workflow: Workflow, now: Optional[datetime] = None, note: Optional[str] = None
) -> int:
    """Send the step awaiting correction back to its participant."""
    now = now or utcnow()
    _require_open(workflow)
    index = workflow.correction_step_index
    if not workflow.awaiting_correction or index is None:
        raise IllegalTransitionError(f"Workflow {workflow.id} is not awaiting a correction")
    step = _require_current(workflow, index)
    transition_step(step, StepStatus.SENT)
    step.sent_at = now
    step.completed_at = None
    step.response = None
    if step.correction_history:
        latest = step.correction_history[-1]
        latest.resubmitted_at = now
        latest.resubmission_note = note
    workflow.awaiting_correction = False
    workflow.correction_step_index = None
    return index


def skip(
    workflow: Workflow, index: int, reason: str, now: Optional[datetime] = None
) -> Optional[DocumentStatus]:
    now = now or utcnow()
    step = _require_current(workflow, index)
    transition_step(step, StepStatus.SKIPPED)
    step.skipped_at = now
    step.skipped_reason = reason
    if workflow.correction_step_index == index:
        workflow.awaiting_correction = False
        workflow.correction_step_index = None
    return _advance(workflow, index, now)


def reassign(workflow: Workflow, index: int, participant: Participant) -> Participant:
    """Hand a step to ``participant``; status and order are left untouched."""
    _require_open(workflow)
    step = workflow.steps[index]
    if step.is_terminal:
        raise IllegalTransitionError(
            f"Step {step.order} is {step.status.value} and cannot be reassigned"
        )
    displaced = step.participant
    step.reassigned_from = displaced
    step.participant = participant
    return displaced


def cancel(
    workflow: Workflow, reason: Optional[str] = None, now: Optional[datetime] = None
) -> DocumentStatus:
    """Terminate the workflow; unfinished steps become implicitly cancelled."""
    now = now or utcnow()
    _require_open(workflow)
    workflow.completed_at = now
    workflow.cancelled_at = now
    workflow.cancel_reason = reason
    workflow.awaiting_correction = False
    workflow.correction_step_index = None
    return DocumentStatus.REJECTED
