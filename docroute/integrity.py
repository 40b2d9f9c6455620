"""Audit of a workflow against the hashes recorded when its packages were issued."""

from __future__ import annotations

import logging
from typing import List

from pydantic import BaseModel, Field

from .hashing import compute_chain_hash, compute_document_hash
from .models import Document, Workflow

logger = logging.getLogger(__name__)


class IntegrityReport(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    document_hash_valid: bool = True
    chain_hashes_valid: bool = True


def verify_workflow_integrity(document: Document, workflow: Workflow) -> IntegrityReport:
    """Recompute the document hash and every issued chain hash.

    Each step that received a package stored the hashes it was sent; a
    difference means the document or an earlier decision changed afterwards.
    Steps that never received a package are not checked.
    """
    errors: List[str] = []
    document_hash_valid = True
    chain_hashes_valid = True

    document_hash = compute_document_hash(document.content)
    for index, step in enumerate(workflow.steps):
        packet = step.packet
        if packet is None:
            continue
        if packet.document_hash != document_hash:
            document_hash_valid = False
            errors.append(f"Step {step.order}: document changed since its package was issued")
        expected_chain = compute_chain_hash(document_hash, workflow.steps, upto=index)
        if packet.chain_hash != expected_chain:
            chain_hashes_valid = False
            errors.append(f"Step {step.order}: chain hash does not match the recorded decisions")

    if errors:
        logger.warning(f"Integrity check failed for workflow_id={workflow.id}: {len(errors)} problem(s)")
    return IntegrityReport(
        valid=not errors,
        errors=errors,
        document_hash_valid=document_hash_valid,
        chain_hashes_valid=chain_hashes_valid,
    )
