"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

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


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite.

    Aggregates are stored as JSON documents; a few columns are duplicated
    outside the JSON so open workflows can be selected without decoding.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                document_id TEXT NOT NULL,
                completed_at TEXT,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS participants (
                email TEXT PRIMARY KEY,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS templates (
                id TEXT PRIMARY KEY,
                created_at TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS activity_log (
                seq INTEGER PRIMARY KEY AUTOINCREMENT,
                id TEXT NOT NULL,
                workflow_id TEXT,
                data TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()
            return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _save_workflow(
        self, workflow: Workflow, document_status: Optional[DocumentStatus]
    ) -> None:
        completed_at = workflow.completed_at.isoformat() if workflow.completed_at else None
        with self._lock:
            cur = self._conn.cursor()
            try:
                cur.execute(
                    "INSERT OR REPLACE INTO workflows (id, document_id, completed_at, data) VALUES (?, ?, ?, ?)",
                    (workflow.id, workflow.document_id, completed_at, workflow.model_dump_json()),
                )
                if document_status is not None:
                    row = cur.execute(
                        "SELECT data FROM documents WHERE id = ?", (workflow.document_id,)
                    ).fetchone()
                    if row:
                        doc = Document.model_validate_json(row["data"])
                        doc.status = document_status
                        doc.updated_at = utcnow()
                        cur.execute(
                            "UPDATE documents SET status = ?, data = ? WHERE id = ?",
                            (doc.status.value, doc.model_dump_json(), doc.id),
                        )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(self, workflow: Workflow) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO workflows (id, document_id, completed_at, data) VALUES (?, ?, ?, ?)",
            workflow.id,
            workflow.document_id,
            workflow.completed_at.isoformat() if workflow.completed_at else None,
            workflow.model_dump_json(),
        )

    async def get_workflow(self, workflow_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM workflows WHERE id = ?", workflow_id
        )
        if not row:
            return None
        return Workflow.model_validate_json(row["data"])

    async def save_workflow(
        self, workflow: Workflow, document_status: Optional[DocumentStatus] = None
    ) -> None:
        await asyncio.to_thread(self._save_workflow, workflow, document_status)

    async def list_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM workflows ORDER BY rowid"
        )
        return [Workflow.model_validate_json(r["data"]) for r in rows]

    async def list_open_workflows(self) -> list[Workflow]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data FROM workflows WHERE completed_at IS NULL ORDER BY rowid",
        )
        return [Workflow.model_validate_json(r["data"]) for r in rows]

    async def get_open_workflow_for_document(self, document_id: str) -> Workflow | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data FROM workflows WHERE document_id = ? AND completed_at IS NULL",
            document_id,
        )
        return Workflow.model_validate_json(row["data"]) if row else None

    async def save_document(self, document: Document) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO documents (id, status, data) VALUES (?, ?, ?)",
            document.id,
            document.status.value,
            document.model_dump_json(),
        )

    async def get_document(self, document_id: str) -> Document | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM documents WHERE id = ?", document_id
        )
        return Document.model_validate_json(row["data"]) if row else None

    async def list_documents(self) -> list[Document]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM documents ORDER BY rowid"
        )
        return [Document.model_validate_json(r["data"]) for r in rows]

    async def save_participant(self, participant: ParticipantRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO participants (email, data) VALUES (?, ?)",
            participant.email,
            participant.model_dump_json(),
        )

    async def get_participant(self, email: str) -> ParticipantRecord | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM participants WHERE email = ?", email
        )
        return ParticipantRecord.model_validate_json(row["data"]) if row else None

    async def list_participants(self) -> list[ParticipantRecord]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM participants ORDER BY email"
        )
        return [ParticipantRecord.model_validate_json(r["data"]) for r in rows]

    async def save_template(self, template: WorkflowTemplate) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO templates (id, created_at, data) VALUES (?, ?, ?)",
            template.id,
            template.created_at.isoformat(),
            template.model_dump_json(),
        )

    async def get_template(self, template_id: str) -> WorkflowTemplate | None:
        row = await asyncio.to_thread(
            self._fetchone, "SELECT data FROM templates WHERE id = ?", template_id
        )
        return WorkflowTemplate.model_validate_json(row["data"]) if row else None

    async def list_templates(self) -> list[WorkflowTemplate]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT data FROM templates ORDER BY created_at DESC"
        )
        return [WorkflowTemplate.model_validate_json(r["data"]) for r in rows]

    async def delete_template(self, template_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM templates WHERE id = ?", template_id
        )
        return deleted > 0

    async def append_activity(self, entry: ActivityEntry) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO activity_log (id, workflow_id, data) VALUES (?, ?, ?)",
            entry.id,
            entry.workflow_id,
            entry.model_dump_json(),
        )

    async def list_activities(self, workflow_id: str | None = None) -> list[ActivityEntry]:
        if workflow_id is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT data FROM activity_log ORDER BY seq"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT data FROM activity_log WHERE workflow_id = ? ORDER BY seq",
                workflow_id,
            )
        return [ActivityEntry.model_validate_json(r["data"]) for r in rows]
