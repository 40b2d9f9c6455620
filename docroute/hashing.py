"""Content digests and the decision hash chain.

All digests are lowercase hex SHA-256. Text is always encoded as UTF-8 and
responses are serialised canonically (sorted keys, compact separators,
camelCase names, ``None`` fields omitted) so the same ledger produces the same
chain on every machine.
"""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Iterable, Optional, Sequence, Union
from urllib.parse import unquote_to_bytes

from .models import StepResponse, StepStatus, WorkflowStep

Content = Union[str, bytes, None]


def compute_hash(data: Content) -> str:
    """Return the SHA-256 hex digest of ``data``; ``None`` hashes as empty."""
    if data is None:
        data = b""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def decode_content(content: Content) -> bytes:
    """Return the raw bytes of a document body.

    ``data:`` URLs are decoded so the digest covers the file itself rather than
    its transport encoding.
    """
    if content is None:
        return b""
    if isinstance(content, bytes):
        return content
    if content.startswith("data:") and "," in content:
        header, payload = content.split(",", 1)
        if header.endswith(";base64"):
            return base64.b64decode(payload)
        return unquote_to_bytes(payload)
    return content.encode("utf-8")


def compute_document_hash(content: Content) -> str:
    return compute_hash(decode_content(content))


def serialize_response(response: StepResponse) -> str:
    """Canonical JSON text of a step response as folded into the chain."""
    payload = response.model_dump(
        mode="json",
        by_alias=True,
        exclude_none=True,
        exclude={"submission_hash"},
    )
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def fold_chain(document_hash: str, responses: Iterable[StepResponse]) -> str:
    chain_hash = document_hash
    for response in responses:
        chain_hash = compute_hash(chain_hash + serialize_response(response))
    return chain_hash


def chained_responses(
    steps: Sequence[WorkflowStep], upto: Optional[int] = None
) -> list[StepResponse]:
    """Responses of completed steps before index ``upto``, in step order."""
    limit = len(steps) if upto is None else upto
    return [
        step.response
        for step in steps[:limit]
        if step.status == StepStatus.COMPLETED and step.response is not None
    ]


def compute_chain_hash(
    document_hash: str, steps: Sequence[WorkflowStep], upto: Optional[int] = None
) -> str:
    """Fold every completed step before ``upto`` into ``document_hash``."""
    return fold_chain(document_hash, chained_responses(steps, upto))


def compute_validation_lock_hash(document_hash: str, chain_hash: str) -> str:
    return compute_hash(document_hash + chain_hash)


def compute_submission_hash(response: StepResponse) -> str:
    """Fingerprint of a submitted decision, used to spot duplicate returns."""
    data = {
        "decision": response.decision.value,
        "comment": response.general_comment,
        "annotationsCount": len(response.annotations),
        "hasSignature": response.signature is not None,
        "hasInitials": response.initials is not None,
        "completedAt": response.completed_at.isoformat(),
    }
    return compute_hash(json.dumps(data, sort_keys=True, separators=(",", ":")))
