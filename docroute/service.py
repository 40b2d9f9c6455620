"""Workflow creation and lifecycle helpers outside the operator surface."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Mapping, Optional, Sequence

from pydantic import BaseModel

from . import ledger
from .activity import ActivityLog, ActivityType
from .errors import (
    DocumentNotFoundError,
    ErrorKind,
    IllegalTransitionError,
    OperationResult,
    TemplateNotFoundError,
    WorkflowConflictError,
    WorkflowNotFoundError,
)
from .models import (
    Annotation,
    DocumentStatus,
    Participant,
    ParticipantRecord,
    ParticipantRole,
    StepStatus,
    TemplateStep,
    Workflow,
    WorkflowStep,
    WorkflowTemplate,
    utcnow,
)
from .persistence import WorkflowRepository, get_repository

logger = logging.getLogger(__name__)


class StepConfig(BaseModel):
    """Definition of one step when a workflow is created."""

    participant: Participant
    role: ParticipantRole
    instructions: Optional[str] = None


def get_all_annotations_up_to_step(workflow: Workflow, step_index: int) -> List[Annotation]:
    """Flatten the annotations of steps ``0..step_index-1`` in order."""
    annotations: List[Annotation] = []
    for step in workflow.steps[:step_index]:
        if step.response is not None:
            annotations.extend(step.response.annotations)
    return annotations


class WorkflowService:
    """Creates workflows and drives the correction loop."""

    def __init__(self, repository: WorkflowRepository | None = None) -> None:
        self._repository = repository or get_repository()
        self._activity = ActivityLog(self._repository)

    async def create_workflow(
        self,
        document_id: str,
        name: str,
        steps: Sequence[StepConfig],
        owner: Participant,
        deadline: Optional[datetime] = None,
    ) -> Workflow:
        """Create a workflow for ``document_id`` and make its first step current.

        Raises:
            ValueError: If ``steps`` is empty.
            DocumentNotFoundError: If the document does not exist.
            WorkflowConflictError: If the document already has an open workflow.
        """
        if not steps:
            raise ValueError("A workflow needs at least one step")

        document = await self._repository.get_document(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")

        existing = await self._repository.get_open_workflow_for_document(document_id)
        if existing is not None:
            raise WorkflowConflictError(
                f"Document {document_id} already routed by open workflow {existing.id}"
            )

        workflow = Workflow(
            document_id=document_id,
            name=name,
            owner=owner,
            deadline=deadline,
            steps=[
                WorkflowStep(
                    order=i + 1,
                    participant=config.participant,
                    role=config.role,
                    instructions=config.instructions,
                )
                for i, config in enumerate(steps)
            ],
        )
        ledger.start(workflow)
        await self._repository.create_workflow(workflow)

        document.workflow_id = workflow.id
        document.status = DocumentStatus.IN_PROGRESS
        document.updated_at = utcnow()
        await self._repository.save_document(document)

        for config in steps:
            await self._register_participant(config.participant, config.role)

        await self._activity.record(
            ActivityType.WORKFLOW_CREATED,
            f"Workflow created: {name}",
            document_id=document_id,
            workflow_id=workflow.id,
            steps=len(steps),
        )
        logger.info(f"Created workflow {workflow.id} with {len(steps)} steps for document {document_id}")
        return workflow

    async def _register_participant(self, participant: Participant, role: ParticipantRole) -> None:
        record = await self._repository.get_participant(participant.email)
        if record is None:
            record = ParticipantRecord(
                name=participant.name,
                email=participant.email,
                organization=participant.organization,
                roles=[role],
            )
        elif role not in record.roles:
            record.roles.append(role)
        await self._repository.save_participant(record)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        return await self._repository.get_workflow(workflow_id)

    async def list_workflows(self) -> list[Workflow]:
        workflows = await self._repository.list_workflows()
        return sorted(workflows, key=lambda wf: wf.created_at, reverse=True)

    async def resubmit_step(
        self, workflow_id: str, note: Optional[str] = None
    ) -> OperationResult:
        """Send the step parked on a correction request back to its participant."""
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            return OperationResult.fail(
                ErrorKind.NOT_FOUND, "Workflow not found", workflow_id=workflow_id
            )
        if workflow.is_completed:
            return OperationResult.fail(
                ErrorKind.STALE_STATE, "Workflow is already completed", workflow_id=workflow_id
            )
        index = workflow.correction_step_index
        if (
            not workflow.awaiting_correction
            or index is None
            or workflow.steps[index].status != StepStatus.CORRECTION_REQUESTED
        ):
            return OperationResult.fail(
                ErrorKind.STALE_STATE,
                "Workflow is not awaiting a correction",
                workflow_id=workflow_id,
            )

        try:
            index = ledger.resubmit(workflow, note=note)
        except IllegalTransitionError as exc:
            return OperationResult.fail(ErrorKind.STALE_STATE, str(exc), workflow_id=workflow_id)
        await self._repository.save_workflow(workflow)

        step = workflow.steps[index]
        await self._activity.record(
            ActivityType.STEP_RESUBMITTED,
            f"Step {step.order} resubmitted to {step.participant.name} "
            f"(correction #{step.correction_count})",
            document_id=workflow.document_id,
            workflow_id=workflow.id,
            step_index=index,
            correction_count=step.correction_count,
        )
        return OperationResult.ok(
            f"Step {step.order} resubmitted",
            workflow_id=workflow.id,
            step_index=index,
            correction_count=step.correction_count,
        )

    # ------------------------------------------------------------------
    # Templates

    async def create_template(
        self, name: str, steps: Sequence[TemplateStep], description: Optional[str] = None
    ) -> WorkflowTemplate:
        if not steps:
            raise ValueError("A template needs at least one step")
        template = WorkflowTemplate(name=name, description=description, steps=list(steps))
        await self._repository.save_template(template)
        await self._activity.record(
            ActivityType.TEMPLATE_CREATED,
            f"Template created: {name}",
            template_id=template.id,
        )
        return template

    async def list_templates(self) -> list[WorkflowTemplate]:
        return await self._repository.list_templates()

    async def _require_template(self, template_id: str) -> WorkflowTemplate:
        template = await self._repository.get_template(template_id)
        if template is None:
            raise TemplateNotFoundError(f"Template {template_id} not found")
        return template

    async def update_template(
        self,
        template_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        steps: Optional[Sequence[TemplateStep]] = None,
    ) -> WorkflowTemplate:
        """Change the given fields of a template; ``None`` leaves a field as is."""
        template = await self._require_template(template_id)
        if steps is not None:
            if not steps:
                raise ValueError("A template needs at least one step")
            template.steps = list(steps)
        if name is not None:
            template.name = name
        if description is not None:
            template.description = description
        template.updated_at = utcnow()
        await self._repository.save_template(template)
        await self._activity.record(
            ActivityType.TEMPLATE_UPDATED,
            f"Template updated: {template.name}",
            template_id=template.id,
        )
        return template

    async def delete_template(self, template_id: str) -> bool:
        template = await self._repository.get_template(template_id)
        if template is None or not await self._repository.delete_template(template_id):
            return False
        await self._activity.record(
            ActivityType.TEMPLATE_DELETED,
            f"Template deleted: {template.name}",
            template_id=template_id,
        )
        return True

    async def save_as_template(
        self, workflow_id: str, name: str, description: Optional[str] = None
    ) -> WorkflowTemplate:
        """Capture the steps of an existing workflow, participants included."""
        workflow = await self._repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(f"Workflow {workflow_id} not found")
        steps = [
            TemplateStep(role=step.role, participant=step.participant, instructions=step.instructions)
            for step in workflow.steps
        ]
        return await self.create_template(name, steps, description)

    async def create_from_template(
        self,
        template_id: str,
        document_id: str,
        owner: Participant,
        name: Optional[str] = None,
        deadline: Optional[datetime] = None,
        participants: Optional[Mapping[int, Participant]] = None,
    ) -> Workflow:
        """Create a workflow from a template and count the use.

        ``participants`` maps step indexes to the person filling that step and
        overrides whoever the template names.

        Raises:
            TemplateNotFoundError: If the template does not exist.
            ValueError: If a step ends up without a participant.
        """
        template = await self._require_template(template_id)
        participants = participants or {}
        steps: list[StepConfig] = []
        for i, step in enumerate(template.steps):
            participant = participants.get(i) or step.participant
            if participant is None:
                raise ValueError(f"Step {i + 1} of template {template.name!r} has no participant")
            steps.append(
                StepConfig(participant=participant, role=step.role, instructions=step.instructions)
            )

        workflow = await self.create_workflow(
            document_id, name or template.name, steps, owner, deadline=deadline
        )

        template.usage_count += 1
        template.updated_at = utcnow()
        await self._repository.save_template(template)
        await self._activity.record(
            ActivityType.TEMPLATE_USED,
            f"Template used: {template.name}",
            document_id=document_id,
            workflow_id=workflow.id,
            template_id=template.id,
        )
        return workflow
