"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, List, Optional

from ..activity import ActivityEntry
from ..models import (
    Document,
    DocumentStatus,
    ParticipantRecord,
    Workflow,
    WorkflowTemplate,
    utcnow,
)
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Objects are deep-copied on the way in
    and out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._workflows: Dict[str, Workflow] = {}
        self._documents: Dict[str, Document] = {}
        self._participants: Dict[str, ParticipantRecord] = {}
        self._templates: Dict[str, WorkflowTemplate] = {}
        self._activities: List[ActivityEntry] = []

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: Workflow) -> None:
        if workflow.id in self._workflows:
            raise ValueError(f"Workflow {workflow.id} already exists")
        self._workflows[workflow.id] = workflow.model_copy(deep=True)

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        wf = self._workflows.get(workflow_id)
        return wf.model_copy(deep=True) if wf else None

    async def save_workflow(
        self, workflow: Workflow, document_status: Optional[DocumentStatus] = None
    ) -> None:
        self._workflows[workflow.id] = workflow.model_copy(deep=True)
        if document_status is not None:
            doc = self._documents.get(workflow.document_id)
            if doc:
                doc.status = document_status
                doc.updated_at = utcnow()

    async def list_workflows(self) -> list[Workflow]:
        return [wf.model_copy(deep=True) for wf in self._workflows.values()]

    async def list_open_workflows(self) -> list[Workflow]:
        return [
            wf.model_copy(deep=True)
            for wf in self._workflows.values()
            if wf.completed_at is None
        ]

    async def get_open_workflow_for_document(self, document_id: str) -> Workflow | None:
        for wf in self._workflows.values():
            if wf.document_id == document_id and wf.completed_at is None:
                return wf.model_copy(deep=True)
        return None

    # ------------------------------------------------------------------
    async def save_document(self, document: Document) -> None:
        self._documents[document.id] = document.model_copy(deep=True)

    async def get_document(self, document_id: str) -> Document | None:
        doc = self._documents.get(document_id)
        return doc.model_copy(deep=True) if doc else None

    async def list_documents(self) -> list[Document]:
        return [doc.model_copy(deep=True) for doc in self._documents.values()]

    # ------------------------------------------------------------------
    async def save_participant(self, participant: ParticipantRecord) -> None:
        self._participants[participant.email] = participant.model_copy(deep=True)

    async def get_participant(self, email: str) -> ParticipantRecord | None:
        record = self._participants.get(email)
        return record.model_copy(deep=True) if record else None

    async def list_participants(self) -> list[ParticipantRecord]:
        return [p.model_copy(deep=True) for p in self._participants.values()]

    # ------------------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        self._templates[template.id] = template.model_copy(deep=True)

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        template = self._templates.get(template_id)
        return template.model_copy(deep=True) if template else None

    async def list_templates(self) -> list[WorkflowTemplate]:
        templates = sorted(self._templates.values(), key=lambda t: t.created_at, reverse=True)
        return [t.model_copy(deep=True) for t in templates]

    async def delete_template(self, template_id: str) -> bool:
        return self._templates.pop(template_id, None) is not None

    # ------------------------------------------------------------------
    async def append_activity(self, entry: ActivityEntry) -> None:
        self._activities.append(entry.model_copy(deep=True))

    async def list_activities(self, workflow_id: str | None = None) -> list[ActivityEntry]:
        return [
            entry.model_copy(deep=True)
            for entry in self._activities
            if workflow_id is None or entry.workflow_id == workflow_id
        ]
