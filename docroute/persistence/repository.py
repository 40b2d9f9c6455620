"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Protocol

from ..models import Document, DocumentStatus, ParticipantRecord, Workflow, WorkflowTemplate

if TYPE_CHECKING:
    from ..activity import ActivityEntry


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Workflows are stored as whole aggregates. Every read returns an
    independent copy, so callers mutate freely and commit with
    :meth:`save_workflow`.
    """

    async def create_workflow(self, workflow: Workflow) -> None:
        """Persist a new workflow."""

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        """Retrieve the workflow by id."""

    async def save_workflow(
        self, workflow: Workflow, document_status: Optional[DocumentStatus] = None
    ) -> None:
        """Replace the stored workflow; update the document status in the same write."""

    async def list_workflows(self) -> list[Workflow]:
        """Return all persisted workflows."""

    async def list_open_workflows(self) -> list[Workflow]:
        """Return workflows that have not completed."""

    async def get_open_workflow_for_document(self, document_id: str) -> Workflow | None:
        """Return the open workflow routing ``document_id``, if any."""

    async def save_document(self, document: Document) -> None:
        """Insert or replace a document."""

    async def get_document(self, document_id: str) -> Document | None:
        """Retrieve a document by id."""

    async def list_documents(self) -> list[Document]:
        """Return all documents."""

    async def save_participant(self, participant: ParticipantRecord) -> None:
        """Insert or replace a directory record, keyed by e-mail."""

    async def get_participant(self, email: str) -> ParticipantRecord | None:
        """Retrieve a directory record by e-mail."""

    async def list_participants(self) -> list[ParticipantRecord]:
        """Return every directory record."""

    async def save_template(self, template: WorkflowTemplate) -> None:
        """Insert or replace a workflow template."""

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        """Retrieve a template by id."""

    async def list_templates(self) -> list[WorkflowTemplate]:
        """Return all templates, newest first."""

    async def delete_template(self, template_id: str) -> bool:
        """Remove a template; return whether it existed."""

    async def append_activity(self, entry: "ActivityEntry") -> None:
        """Append an entry to the activity log."""

    async def list_activities(self, workflow_id: str | None = None) -> list["ActivityEntry"]:
        """Return activity entries, oldest first, optionally for one workflow."""
