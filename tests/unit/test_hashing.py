"""Tests for content digests and the decision hash chain."""

from datetime import datetime, timezone

from docroute.hashing import (
    compute_chain_hash,
    compute_document_hash,
    compute_hash,
    compute_submission_hash,
    compute_validation_lock_hash,
    decode_content,
    fold_chain,
    serialize_response,
)
from docroute.models import (
    Participant,
    ParticipantRole,
    StepDecision,
    StepResponse,
    StepStatus,
    WorkflowStep,
)

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
ABC_SHA256 = "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
WHEN = datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)


def _response(comment=None, decision=StepDecision.APPROVED) -> StepResponse:
    return StepResponse(decision=decision, general_comment=comment, completed_at=WHEN)


def _step(order, status, response=None) -> WorkflowStep:
    return WorkflowStep(
        order=order,
        participant=Participant(name=f"P{order}", email=f"p{order}@example.com"),
        role=ParticipantRole.REVIEWER,
        status=status,
        response=response,
    )


def test_compute_hash_known_vectors():
    assert compute_hash("abc") == ABC_SHA256
    assert compute_hash(b"abc") == ABC_SHA256
    assert compute_hash("") == EMPTY_SHA256
    assert compute_hash(None) == EMPTY_SHA256


def test_document_hash_decodes_data_urls():
    data_url = "data:text/plain;base64,aGVsbG8="
    assert decode_content(data_url) == b"hello"
    assert compute_document_hash(data_url) == compute_hash("hello")
    assert compute_document_hash("data:text/plain,hello%20world") == compute_hash("hello world")


def test_document_hash_of_missing_content_is_empty_hash():
    assert compute_document_hash(None) == EMPTY_SHA256
    assert compute_document_hash("") == EMPTY_SHA256


def test_serialized_response_is_canonical():
    response = _response("Looks good")
    response.submission_hash = "abc123"
    text = serialize_response(response)

    assert text.startswith('{"annotations":[],"completedAt":')
    assert '"generalComment":"Looks good"' in text
    assert "submissionHash" not in text
    assert "signature" not in text
    assert ", " not in text.replace("Looks good", "")


def test_fold_chain_without_responses_is_document_hash():
    assert fold_chain("doc-hash", []) == "doc-hash"


def test_fold_chain_links_each_response():
    first, second = _response("one"), _response("two")
    expected = compute_hash(compute_hash("doc" + serialize_response(first)) + serialize_response(second))
    assert fold_chain("doc", [first, second]) == expected


def test_chain_hash_only_folds_completed_steps():
    r1, r2, r3 = _response("one"), _response("fix it", StepDecision.MODIFICATION_REQUESTED), _response("three")
    steps = [
        _step(1, StepStatus.COMPLETED, r1),
        _step(2, StepStatus.CORRECTION_REQUESTED, r2),
        _step(3, StepStatus.COMPLETED, r3),
        _step(4, StepStatus.SKIPPED),
    ]

    assert compute_chain_hash("doc", steps) == fold_chain("doc", [r1, r3])
    assert compute_chain_hash("doc", steps, upto=1) == fold_chain("doc", [r1])
    assert compute_chain_hash("doc", steps, upto=0) == "doc"


def test_chain_hash_changes_when_a_recorded_decision_changes():
    steps = [_step(1, StepStatus.COMPLETED, _response("original"))]
    before = compute_chain_hash("doc", steps)
    steps[0].response.general_comment = "edited"
    assert compute_chain_hash("doc", steps) != before


def test_validation_lock_hash():
    assert compute_validation_lock_hash("a", "bc") == ABC_SHA256


def test_submission_hash_identifies_identical_submissions():
    assert compute_submission_hash(_response("same")) == compute_submission_hash(_response("same"))
    assert compute_submission_hash(_response("same")) != compute_submission_hash(_response("other"))
