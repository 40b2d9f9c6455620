"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

from typing import Optional

import asyncpg

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


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS docroute_workflows (
                id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL,
                completed_at TIMESTAMPTZ,
                created_seq BIGSERIAL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS docroute_documents (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS docroute_participants (
                email TEXT PRIMARY KEY,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS docroute_templates (
                id TEXT PRIMARY KEY,
                created_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS docroute_activity_log (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL,
                workflow_id TEXT,
                data JSONB NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def create_workflow(self, workflow: Workflow) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO docroute_workflows (id, document_id, completed_at, data) VALUES ($1, $2, $3, $4)",
                workflow.id,
                workflow.document_id,
                workflow.completed_at,
                workflow.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM docroute_workflows WHERE id = $1", workflow_id
            )
        finally:
            await conn.close()
        return Workflow.model_validate_json(row["data"]) if row else None

    async def save_workflow(
        self, workflow: Workflow, document_status: Optional[DocumentStatus] = None
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO docroute_workflows (id, document_id, completed_at, data)
                    VALUES ($1, $2, $3, $4)
                    ON CONFLICT (id) DO UPDATE
                    SET completed_at = EXCLUDED.completed_at, data = EXCLUDED.data
                    """,
                    workflow.id,
                    workflow.document_id,
                    workflow.completed_at,
                    workflow.model_dump_json(),
                )
                if document_status is not None:
                    row = await conn.fetchrow(
                        "SELECT data FROM docroute_documents WHERE id = $1 FOR UPDATE",
                        workflow.document_id,
                    )
                    if row:
                        doc = Document.model_validate_json(row["data"])
                        doc.status = document_status
                        doc.updated_at = utcnow()
                        await conn.execute(
                            "UPDATE docroute_documents SET status = $1, data = $2 WHERE id = $3",
                            doc.status.value,
                            doc.model_dump_json(),
                            doc.id,
                        )
        finally:
            await conn.close()

    async def list_workflows(self) -> list[Workflow]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data FROM docroute_workflows ORDER BY created_seq"
            )
        finally:
            await conn.close()
        return [Workflow.model_validate_json(r["data"]) for r in rows]

    async def list_open_workflows(self) -> list[Workflow]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data FROM docroute_workflows WHERE completed_at IS NULL ORDER BY created_seq"
            )
        finally:
            await conn.close()
        return [Workflow.model_validate_json(r["data"]) for r in rows]

    async def get_open_workflow_for_document(self, document_id: str) -> Workflow | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM docroute_workflows WHERE document_id = $1 AND completed_at IS NULL",
                document_id,
            )
        finally:
            await conn.close()
        return Workflow.model_validate_json(row["data"]) if row else None

    # ------------------------------------------------------------------
    async def save_document(self, document: Document) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO docroute_documents (id, status, data) VALUES ($1, $2, $3)
                ON CONFLICT (id) DO UPDATE SET status = EXCLUDED.status, data = EXCLUDED.data
                """,
                document.id,
                document.status.value,
                document.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_document(self, document_id: str) -> Document | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM docroute_documents WHERE id = $1", document_id
            )
        finally:
            await conn.close()
        return Document.model_validate_json(row["data"]) if row else None

    async def list_documents(self) -> list[Document]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT data FROM docroute_documents")
        finally:
            await conn.close()
        return [Document.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    async def save_participant(self, participant: ParticipantRecord) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO docroute_participants (email, data) VALUES ($1, $2)
                ON CONFLICT (email) DO UPDATE SET data = EXCLUDED.data
                """,
                participant.email,
                participant.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_participant(self, email: str) -> ParticipantRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM docroute_participants WHERE email = $1", email
            )
        finally:
            await conn.close()
        return ParticipantRecord.model_validate_json(row["data"]) if row else None

    async def list_participants(self) -> list[ParticipantRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data FROM docroute_participants ORDER BY email"
            )
        finally:
            await conn.close()
        return [ParticipantRecord.model_validate_json(r["data"]) for r in rows]

    # ------------------------------------------------------------------
    async def save_template(self, template: WorkflowTemplate) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO docroute_templates (id, created_at, data) VALUES ($1, $2, $3)
                ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data
                """,
                template.id,
                template.created_at,
                template.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data FROM docroute_templates WHERE id = $1", template_id
            )
        finally:
            await conn.close()
        return WorkflowTemplate.model_validate_json(row["data"]) if row else None

    async def list_templates(self) -> list[WorkflowTemplate]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data FROM docroute_templates ORDER BY created_at DESC"
            )
        finally:
            await conn.close()
        return [WorkflowTemplate.model_validate_json(r["data"]) for r in rows]

    async def delete_template(self, template_id: str) -> bool:
        conn = await self._connect()
        try:
            status = await conn.execute(
                "DELETE FROM docroute_templates WHERE id = $1", template_id
            )
        finally:
            await conn.close()
        # status is "DELETE <count>"
        return status.split()[-1] != "0"

    # ------------------------------------------------------------------
    async def append_activity(self, entry: ActivityEntry) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO docroute_activity_log (id, workflow_id, data) VALUES ($1, $2, $3)",
                entry.id,
                entry.workflow_id,
                entry.model_dump_json(),
            )
        finally:
            await conn.close()

    async def list_activities(self, workflow_id: str | None = None) -> list[ActivityEntry]:
        conn = await self._connect()
        try:
            if workflow_id is None:
                rows = await conn.fetch(
                    "SELECT data FROM docroute_activity_log ORDER BY seq"
                )
            else:
                rows = await conn.fetch(
                    "SELECT data FROM docroute_activity_log WHERE workflow_id = $1 ORDER BY seq",
                    workflow_id,
                )
        finally:
            await conn.close()
        return [ActivityEntry.model_validate_json(r["data"]) for r in rows]
