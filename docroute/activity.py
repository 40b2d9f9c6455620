"""Audit trail of workflow events."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import BaseModel, Field

from .models import new_id, utcnow

if TYPE_CHECKING:
    from .persistence import WorkflowRepository

logger = logging.getLogger(__name__)


class ActivityType(str, Enum):
    WORKFLOW_CREATED = "workflow_created"
    PACKAGE_GENERATED = "package_generated"
    RETURN_IMPORTED = "return_imported"
    STEP_COMPLETED = "step_completed"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_REJECTED = "workflow_rejected"
    STEP_RETURNED_FOR_CORRECTION = "step_returned_for_correction"
    STEP_RESUBMITTED = "step_resubmitted"
    STEP_SKIPPED = "step_skipped"
    STEP_REASSIGNED = "step_reassigned"
    DEADLINE_EXTENDED = "deadline_extended"
    WORKFLOW_CANCELLED = "workflow_cancelled"
    PACKET_EXTENDED = "packet_extended"
    INTEGRITY_MISMATCH = "integrity_mismatch"
    TEMPLATE_CREATED = "template_created"
    TEMPLATE_UPDATED = "template_updated"
    TEMPLATE_DELETED = "template_deleted"
    TEMPLATE_USED = "template_used"


class ActivityEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utcnow)
    type: ActivityType
    description: str
    document_id: Optional[str] = None
    workflow_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ActivityLog:
    """Records workflow events through the configured repository."""

    def __init__(self, repository: "WorkflowRepository") -> None:
        self._repository = repository

    async def record(
        self,
        type: ActivityType,
        description: str,
        document_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        **metadata: Any,
    ) -> ActivityEntry:
        entry = ActivityEntry(
            type=type,
            description=description,
            document_id=document_id,
            workflow_id=workflow_id,
            metadata=metadata,
        )
        await self._repository.append_activity(entry)
        logger.debug(f"Activity {type.value} recorded for workflow_id={workflow_id}")
        return entry
