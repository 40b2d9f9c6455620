"""Merging of returned decision artifacts into the step ledger.

Processing happens in two stages. :func:`parse_return_file` turns untrusted
bytes into a :class:`ReturnFileData` or raises :class:`InvalidReturnFileError`.
:class:`ReturnProcessor` then checks the parsed artifact against the live
workflow and, when everything lines up, records the decision in one write.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from . import ledger
from .activity import ActivityLog, ActivityType
from .config import DocrouteConfig, ReturnConfig, load_config
from .contracts import ReturnFileData
from .errors import ErrorKind, IllegalTransitionError, InvalidReturnFileError
from .hashing import compute_chain_hash, compute_document_hash, compute_submission_hash
from .models import (
    ACCEPT_DECISIONS,
    DocumentStatus,
    StepDecision,
    StepResponse,
    StepStatus,
    Workflow,
    WorkflowStep,
    utcnow,
)
from .persistence import WorkflowRepository, get_repository

logger = logging.getLogger(__name__)

RawReturn = Union[str, bytes, Mapping[str, Any], ReturnFileData]


class ReturnResult(BaseModel):
    """Outcome of merging one return file."""

    success: bool
    message: str
    error: Optional[ErrorKind] = None
    workflow_id: Optional[str] = None
    step_id: Optional[str] = None
    decision: Optional[StepDecision] = None
    integrity_mismatch: bool = False
    duplicate: bool = False

    def __bool__(self) -> bool:
        return self.success


def parse_return_file(raw: RawReturn) -> ReturnFileData:
    """Validate the shape of a returned artifact.

    Raises:
        InvalidReturnFileError: If the JSON is malformed, a required field
            (``version``, ``workflowId``, ``stepId``, ``decision``) is missing
            or the decision is unknown.
    """
    if isinstance(raw, ReturnFileData):
        return raw
    try:
        if isinstance(raw, (str, bytes)):
            return ReturnFileData.model_validate_json(raw)
        return ReturnFileData.model_validate(raw)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'file'}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidReturnFileError(f"Invalid return file: {problems}") from exc


def build_step_response(data: ReturnFileData) -> StepResponse:
    response = StepResponse(
        decision=data.decision,
        annotations=data.annotations,
        general_comment=data.general_comment,
        signature=data.signature,
        initials=data.initials,
        rejection_details=data.rejection_details,
        completed_at=data.completed_at or utcnow(),
    )
    response.submission_hash = compute_submission_hash(response)
    return response


def _is_duplicate(step: WorkflowStep, response: StepResponse) -> bool:
    if step.response is not None and step.response.submission_hash == response.submission_hash:
        return True
    return any(
        entry.response is not None
        and entry.response.submission_hash == response.submission_hash
        for entry in step.correction_history
    )


class ReturnProcessor:
    """Applies return files produced by the offline viewer."""

    def __init__(
        self,
        repository: WorkflowRepository | None = None,
        config: DocrouteConfig | None = None,
    ) -> None:
        self._repository = repository or get_repository()
        self._config: ReturnConfig = (config or load_config()).returns
        self._activity = ActivityLog(self._repository)

    def _fail(
        self,
        error: ErrorKind,
        message: str,
        data: Optional[ReturnFileData] = None,
        **extra: Any,
    ) -> ReturnResult:
        logger.info(f"Return rejected ({error.value}): {message}")
        return ReturnResult(
            success=False,
            message=message,
            error=error,
            workflow_id=data.workflow_id if data else None,
            step_id=data.step_id if data else None,
            decision=data.decision if data else None,
            **extra,
        )

    def _duplicate(self, step: WorkflowStep, data: ReturnFileData) -> ReturnResult:
        return self._fail(
            ErrorKind.STALE_STATE,
            f"Duplicate submission: step {step.order} already recorded this decision",
            data,
            duplicate=True,
        )

    def _stale_or_duplicate(
        self, step: Optional[WorkflowStep], response: StepResponse, message: str, data: ReturnFileData
    ) -> ReturnResult:
        if step is not None and _is_duplicate(step, response):
            return self._duplicate(step, data)
        return self._fail(ErrorKind.STALE_STATE, message, data)

    async def process_return(self, raw: RawReturn) -> ReturnResult:
        """Check ``raw`` against the ledger and record its decision.

        Business conditions are reported through the result; nothing is
        written unless the decision is merged.
        """
        try:
            data = parse_return_file(raw)
        except InvalidReturnFileError as exc:
            return self._fail(ErrorKind.INVALID_INPUT, str(exc))

        response = build_step_response(data)

        workflow = await self._repository.get_workflow(data.workflow_id)
        if workflow is None:
            return self._fail(ErrorKind.NOT_FOUND, f"Workflow {data.workflow_id} not found", data)

        index = workflow.step_index(data.step_id)
        step = workflow.steps[index] if index is not None else None
        if workflow.is_completed:
            return self._stale_or_duplicate(step, response, "Workflow is already completed", data)
        if index is None or step is None:
            return self._fail(ErrorKind.NOT_FOUND, f"Step {data.step_id} not found", data)
        if index != workflow.current_step_index:
            return self._stale_or_duplicate(
                step,
                response,
                f"Step {step.order} is not the current step ({workflow.current_step_index + 1})",
                data,
            )
        if step.status == StepStatus.CORRECTION_REQUESTED:
            return self._stale_or_duplicate(
                step, response, f"Step {step.order} is awaiting a correction from the owner", data
            )
        if step.status != StepStatus.SENT:
            return self._fail(
                ErrorKind.STALE_STATE,
                f"Step {step.order} is {step.status.value}; no package has been sent",
                data,
            )
        if _is_duplicate(step, response):
            return self._duplicate(step, data)
        if (
            data.package_id
            and step.packet is not None
            and data.package_id != step.packet.package_id
        ):
            return self._fail(
                ErrorKind.STALE_STATE,
                f"Package {data.package_id} was superseded by {step.packet.package_id} "
                f"for step {step.order}",
                data,
            )
        if step.packet is not None and step.packet.is_expired():
            return self._fail(
                ErrorKind.STALE_STATE,
                f"Package for step {step.order} expired at {step.packet.expires_at.isoformat()}",
                data,
            )

        document = await self._repository.get_document(workflow.document_id)
        if document is None:
            return self._fail(ErrorKind.NOT_FOUND, f"Document {workflow.document_id} not found", data)

        mismatches = self._integrity_mismatches(data, document.content, workflow, index)
        if mismatches:
            await self._report_mismatch(workflow, index, mismatches)
            if self._config.integrity_policy == "reject":
                return ReturnResult(
                    success=False,
                    message="Integrity check failed: " + "; ".join(mismatches),
                    error=ErrorKind.INTEGRITY_MISMATCH,
                    workflow_id=workflow.id,
                    step_id=step.id,
                    decision=data.decision,
                    integrity_mismatch=True,
                )

        try:
            document_status, message = self._apply(workflow, index, response)
        except IllegalTransitionError as exc:
            return self._fail(ErrorKind.STALE_STATE, str(exc), data)
        await self._repository.save_workflow(workflow, document_status=document_status)

        await self._record_activity(workflow, index, data)
        logger.info(f"Merged {data.decision.value} for step {step.order} of workflow_id={workflow.id}")
        return ReturnResult(
            success=True,
            message=message,
            workflow_id=workflow.id,
            step_id=step.id,
            decision=data.decision,
            integrity_mismatch=bool(mismatches),
        )

    def _integrity_mismatches(
        self, data: ReturnFileData, content: Optional[str], workflow: Workflow, index: int
    ) -> list[str]:
        mismatches: list[str] = []
        document_hash = compute_document_hash(content)
        if data.document_hash and data.document_hash != document_hash:
            mismatches.append("document hash does not match the stored document")
        if data.chain_hash:
            chain_hash = compute_chain_hash(document_hash, workflow.steps, upto=index)
            if data.chain_hash != chain_hash:
                mismatches.append("chain hash does not match the recorded decisions")
        return mismatches

    async def _report_mismatch(self, workflow: Workflow, index: int, mismatches: list[str]) -> None:
        logger.warning(
            f"Integrity mismatch on step {index + 1} of workflow_id={workflow.id}: "
            + "; ".join(mismatches)
        )
        await self._activity.record(
            ActivityType.INTEGRITY_MISMATCH,
            f"Integrity mismatch on return for step {index + 1}",
            document_id=workflow.document_id,
            workflow_id=workflow.id,
            step_index=index,
            problems=mismatches,
            policy=self._config.integrity_policy,
        )

    @staticmethod
    def _apply(
        workflow: Workflow, index: int, response: StepResponse
    ) -> tuple[Optional[DocumentStatus], str]:
        step = workflow.steps[index]
        if response.decision in ACCEPT_DECISIONS:
            status = ledger.record_acceptance(workflow, index, response)
            if workflow.is_completed:
                return status, "Workflow completed"
            return status, f"Step {step.order} completed"
        if response.decision == StepDecision.REJECTED:
            return ledger.record_rejection(workflow, index, response), "Workflow rejected"
        entry = ledger.record_correction_request(workflow, index, response)
        return None, f"Correction #{entry.number} requested by {step.participant.name}"

    async def _record_activity(self, workflow: Workflow, index: int, data: ReturnFileData) -> None:
        step = workflow.steps[index]
        await self._activity.record(
            ActivityType.RETURN_IMPORTED,
            f"Return imported from {step.participant.name}",
            document_id=workflow.document_id,
            workflow_id=workflow.id,
            step_index=index,
            package_id=data.package_id,
            decision=data.decision.value,
        )
        if data.decision in ACCEPT_DECISIONS:
            await self._activity.record(
                ActivityType.STEP_COMPLETED,
                f"Step {step.order} {data.decision.value} by {step.participant.name}",
                document_id=workflow.document_id,
                workflow_id=workflow.id,
                step_index=index,
            )
            if workflow.is_completed:
                await self._activity.record(
                    ActivityType.WORKFLOW_COMPLETED,
                    "All steps completed",
                    document_id=workflow.document_id,
                    workflow_id=workflow.id,
                )
        elif data.decision == StepDecision.REJECTED:
            details = data.rejection_details
            await self._activity.record(
                ActivityType.WORKFLOW_REJECTED,
                f"Rejected by {step.participant.name}",
                document_id=workflow.document_id,
                workflow_id=workflow.id,
                step_index=index,
                category=details.category.value if details else None,
                reason=details.reason if details else None,
            )
        else:
            await self._activity.record(
                ActivityType.STEP_RETURNED_FOR_CORRECTION,
                f"{step.participant.name} requested corrections (#{step.correction_count})",
                document_id=workflow.document_id,
                workflow_id=workflow.id,
                step_index=index,
                correction_count=step.correction_count,
            )
