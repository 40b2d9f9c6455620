"""Assembly of the hash-chained package sent to a step's participant."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from . import ledger
from .activity import ActivityLog, ActivityType
from .config import DocrouteConfig, PackageConfig, load_config
from .constants import PACKAGE_FORMAT_VERSION, participant_color
from .contracts import (
    NextStepInfo,
    PackageData,
    PackageDocument,
    PackageSecurity,
    PackageStep,
    PackageWorkflowInfo,
    PreviousStepSummary,
)
from .errors import ErrorKind, OperationResult
from .hashing import (
    compute_chain_hash,
    compute_document_hash,
    compute_validation_lock_hash,
)
from .models import (
    Document,
    PacketRecord,
    ParticipantRole,
    StepStatus,
    Workflow,
    utcnow,
)
from .persistence import WorkflowRepository, get_repository
from .service import get_all_annotations_up_to_step

logger = logging.getLogger(__name__)


class PackageResult(OperationResult):
    package: Optional[PackageData] = None


def _previous_steps(workflow: Workflow, step_index: int) -> List[PreviousStepSummary]:
    summaries: List[PreviousStepSummary] = []
    for i, step in enumerate(workflow.steps[:step_index]):
        if step.response is None:
            continue
        summaries.append(
            PreviousStepSummary(
                step_number=step.order,
                participant=step.participant,
                role=step.role,
                completed_at=step.completed_at or step.response.completed_at,
                decision=step.response.decision,
                general_comment=step.response.general_comment,
                annotation_count=len(step.response.annotations),
                annotations=step.response.annotations,
                color=participant_color(i),
            )
        )
    return summaries


def _is_locked_for_signature(workflow: Workflow, step_index: int) -> bool:
    """A signer step is locked once any earlier non-signer step has completed."""
    if workflow.steps[step_index].role != ParticipantRole.SIGNER:
        return False
    return any(
        prev.status == StepStatus.COMPLETED
        and prev.role != ParticipantRole.SIGNER
        and prev.response is not None
        for prev in workflow.steps[:step_index]
    )


def build_package_data(
    document: Document,
    workflow: Workflow,
    step_index: int,
    version: str = PACKAGE_FORMAT_VERSION,
    expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> PackageData:
    """Project ``workflow`` and ``document`` into the package for ``step_index``.

    Pure function: the ledger is not modified. Empty or missing content is
    hashed as empty input.
    """
    if not 0 <= step_index < len(workflow.steps):
        raise IndexError(f"Step index {step_index} out of range for workflow {workflow.id}")

    step = workflow.steps[step_index]
    document_hash = compute_document_hash(document.content)
    chain_hash = compute_chain_hash(document_hash, workflow.steps, upto=step_index)

    last_validation_hash = None
    locked = _is_locked_for_signature(workflow, step_index)
    if locked:
        last_validation_hash = compute_validation_lock_hash(document_hash, chain_hash)

    next_step = None
    if step_index + 1 < len(workflow.steps):
        following = workflow.steps[step_index + 1]
        next_step = NextStepInfo(participant=following.participant, role=following.role)

    return PackageData(
        version=version,
        generated_at=now or utcnow(),
        document=PackageDocument(
            id=document.id,
            name=document.name,
            type=document.type,
            content=document.content,
            preview_content=document.preview_content,
        ),
        workflow=PackageWorkflowInfo(
            id=workflow.id,
            total_steps=len(workflow.steps),
            current_step_index=step_index,
        ),
        current_step=PackageStep(
            id=step.id,
            order=step.order,
            participant=step.participant,
            role=step.role,
            instructions=step.instructions,
        ),
        owner=workflow.owner,
        previous_steps=_previous_steps(workflow, step_index),
        all_annotations=get_all_annotations_up_to_step(workflow, step_index),
        next_step=next_step,
        security=PackageSecurity(
            document_hash=document_hash,
            chain_hash=chain_hash,
            last_validation_hash=last_validation_hash,
            is_locked_for_signature=locked,
        ),
        expires_at=expires_at,
    )


def render_package_json(package: PackageData) -> str:
    """Serialise a package for embedding in the participant's viewer."""
    return package.to_json(indent=2)


class PackageBuilder:
    """Generates packages for the current step and records their issue."""

    def __init__(
        self,
        repository: WorkflowRepository | None = None,
        config: DocrouteConfig | None = None,
    ) -> None:
        self._repository = repository or get_repository()
        self._config: PackageConfig = (config or load_config()).packages
        self._activity = ActivityLog(self._repository)

    async def generate_package(
        self, workflow_id: str, step_index: Optional[int] = None
    ) -> PackageResult:
        """Build the package for ``step_index`` (default: the current step).

        A ``pending`` step is marked ``sent``. Regenerating the package of a
        ``sent`` step issues a fresh package id and expiry window.
        """
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            return PackageResult.fail(ErrorKind.NOT_FOUND, "Workflow not found", workflow_id=workflow_id)
        if workflow.is_completed:
            return PackageResult.fail(
                ErrorKind.STALE_STATE, "Workflow is already completed", workflow_id=workflow_id
            )
        index = workflow.current_step_index if step_index is None else step_index
        if index != workflow.current_step_index:
            return PackageResult.fail(
                ErrorKind.STALE_STATE,
                f"Step index {index} is not the current step ({workflow.current_step_index})",
                workflow_id=workflow_id,
            )
        step = workflow.steps[index]
        if step.status not in (StepStatus.PENDING, StepStatus.SENT):
            return PackageResult.fail(
                ErrorKind.STALE_STATE,
                f"Step {step.order} is {step.status.value}; no package can be issued",
                workflow_id=workflow_id,
            )
        document = await self._repository.get_document(workflow.document_id)
        if document is None:
            return PackageResult.fail(
                ErrorKind.NOT_FOUND, "Document not found", workflow_id=workflow_id
            )

        now = utcnow()
        expires_at = (
            now + timedelta(days=self._config.expiration_days)
            if self._config.expiration_days
            else None
        )
        package = build_package_data(
            document,
            workflow,
            index,
            version=self._config.version,
            expires_at=expires_at,
            now=now,
        )

        ledger.mark_sent(workflow, index, now)
        step.packet = PacketRecord(
            package_id=package.package_id,
            generated_at=now,
            document_hash=package.security.document_hash,
            chain_hash=package.security.chain_hash,
            expires_at=expires_at,
            max_extensions=self._config.max_extensions,
        )
        await self._repository.save_workflow(workflow)

        await self._activity.record(
            ActivityType.PACKAGE_GENERATED,
            f"Package generated for {step.participant.name}",
            document_id=workflow.document_id,
            workflow_id=workflow_id,
            step_index=index,
            package_id=package.package_id,
        )
        logger.info(
            f"Generated package {package.package_id} for step {step.order} of workflow_id={workflow_id}"
        )
        return PackageResult(
            success=True,
            message=f"Package generated for {step.participant.name}",
            workflow_id=workflow_id,
            package=package,
        )
