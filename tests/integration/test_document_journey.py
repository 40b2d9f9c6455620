"""End-to-end routing journeys through package and return files."""

import json

import pytest

from docroute.activity import ActivityType
from docroute.config import DocrouteConfig
from docroute.hashing import compute_document_hash, compute_hash, serialize_response
from docroute.integrity import verify_workflow_integrity
from docroute.models import (
    Document,
    DocumentStatus,
    DocumentType,
    Participant,
    ParticipantRole,
    StepStatus,
)
from docroute.packaging import PackageBuilder, render_package_json
from docroute.persistence import SQLiteWorkflowRepository
from docroute.returns import ReturnProcessor
from docroute.service import StepConfig, WorkflowService

CONTENT = "data:text/plain;base64,U2VydmljZSBhZ3JlZW1lbnQ="
OWNER = Participant(name="Olive Owner", email="olive@example.com")
STEPS = [
    StepConfig(participant=Participant(name="Rita Reviewer", email="rita@example.com"), role=ParticipantRole.REVIEWER),
    StepConfig(participant=Participant(name="Alan Approver", email="alan@example.com"), role=ParticipantRole.APPROVER),
    StepConfig(participant=Participant(name="Sam Signer", email="sam@example.com"), role=ParticipantRole.SIGNER),
]


def _fill_in(package_json: str, decision: str, **extra) -> str:
    """Act as the offline viewer: read a package and produce its return file."""
    package = json.loads(package_json)
    payload = {
        "version": package["version"],
        "packageId": package["packageId"],
        "workflowId": package["workflow"]["id"],
        "stepId": package["currentStep"]["id"],
        "documentId": package["document"]["id"],
        "participant": package["currentStep"]["participant"],
        "decision": decision,
        "documentHash": package["security"]["documentHash"],
        "chainHash": package["security"]["chainHash"],
    }
    payload.update(extra)
    return json.dumps(payload)


async def _issue(repo, config, workflow_id) -> str:
    result = await PackageBuilder(repo, config).generate_package(workflow_id)
    assert result.success, result.message
    return render_package_json(result.package)


async def _start(repo) -> str:
    document = Document(name="agreement.txt", type=DocumentType.TEXT, content=CONTENT)
    await repo.save_document(document)
    workflow = await WorkflowService(repo).create_workflow(document.id, "Service agreement", STEPS, OWNER)
    return workflow.id


@pytest.mark.asyncio
async def test_review_correction_approve_sign(tmp_path):
    db_path = tmp_path / "docroute.db"
    config = DocrouteConfig()
    repo = SQLiteWorkflowRepository(db_path)
    workflow_id = await _start(repo)

    # reviewer asks for a correction, owner resubmits, reviewer accepts
    package = await _issue(repo, config, workflow_id)
    result = await ReturnProcessor(repo, config).process_return(
        _fill_in(
            package,
            "modification_requested",
            rejectionDetails={"category": "incomplete", "reason": "Add payment terms"},
        )
    )
    assert result.success
    assert (await WorkflowService(repo).resubmit_step(workflow_id, note="Payment terms added")).success

    package = await _issue(repo, config, workflow_id)
    review = _fill_in(
        package,
        "reviewed",
        generalComment="Good to go",
        completedAt="2026-04-01T08:00:00Z",
        annotations=[
            {
                "stepId": json.loads(package)["currentStep"]["id"],
                "participantName": "Rita Reviewer",
                "participantRole": "reviewer",
                "type": "highlight",
                "content": "Key clause",
                "position": {"page": 1, "x": 40, "y": 120, "width": 200, "height": 12},
            }
        ],
    )
    assert (await ReturnProcessor(repo, config).process_return(review)).success

    # a process restart does not lose state
    repo = SQLiteWorkflowRepository(db_path)

    package = await _issue(repo, config, workflow_id)
    approver_view = json.loads(package)
    assert approver_view["previousSteps"][0]["generalComment"] == "Good to go"
    assert approver_view["allAnnotations"][0]["content"] == "Key clause"
    assert approver_view["security"]["isLockedForSignature"] is False
    assert (await ReturnProcessor(repo, config).process_return(_fill_in(package, "approved"))).success

    package = await _issue(repo, config, workflow_id)
    signer_view = json.loads(package)
    assert signer_view["security"]["isLockedForSignature"] is True
    assert len(signer_view["previousSteps"]) == 2

    # the chain the signer received can be recomputed from the ledger by hand
    workflow = await repo.get_workflow(workflow_id)
    expected = compute_document_hash(CONTENT)
    assert expected == compute_hash("Service agreement")
    for step in workflow.steps[:2]:
        expected = compute_hash(expected + serialize_response(step.response))
    assert signer_view["security"]["chainHash"] == expected
    assert signer_view["security"]["lastValidationHash"] == compute_hash(
        signer_view["security"]["documentHash"] + expected
    )

    signature = {
        "image": "data:image/png;base64,iVBORw0KGgo=",
        "timestamp": "2026-04-02T09:00:00Z",
        "hash": "0" * 64,
        "metadata": {"participantName": "Sam Signer", "participantEmail": "sam@example.com"},
        "position": {"x": 100, "y": 700},
        "source": "draw",
    }
    result = await ReturnProcessor(repo, config).process_return(
        _fill_in(package, "approved", signature=signature)
    )
    assert result.success
    assert result.message == "Workflow completed"

    workflow = await repo.get_workflow(workflow_id)
    assert workflow.is_completed
    assert [s.status for s in workflow.steps] == [StepStatus.COMPLETED] * 3
    assert workflow.steps[0].correction_count == 1
    assert workflow.steps[0].correction_history[0].resubmission_note == "Payment terms added"
    assert workflow.steps[2].response.signature.metadata.participant_email == "sam@example.com"

    document = await repo.get_document(workflow.document_id)
    assert document.status == DocumentStatus.COMPLETED
    assert verify_workflow_integrity(document, workflow).valid

    types = [entry.type for entry in await repo.list_activities(workflow_id)]
    assert types[0] == ActivityType.WORKFLOW_CREATED
    assert types.count(ActivityType.PACKAGE_GENERATED) == 4
    assert types[-1] == ActivityType.WORKFLOW_COMPLETED


@pytest.mark.asyncio
async def test_rejection_freezes_remaining_steps(tmp_path):
    config = DocrouteConfig()
    repo = SQLiteWorkflowRepository(tmp_path / "docroute.db")
    workflow_id = await _start(repo)

    package = await _issue(repo, config, workflow_id)
    assert (await ReturnProcessor(repo, config).process_return(_fill_in(package, "reviewed"))).success

    package = await _issue(repo, config, workflow_id)
    rejected = await ReturnProcessor(repo, config).process_return(
        _fill_in(
            package,
            "rejected",
            rejectionDetails={"category": "unauthorized", "reason": "Signer lacks mandate"},
        )
    )
    assert rejected.success

    workflow = await repo.get_workflow(workflow_id)
    assert workflow.is_completed
    assert [s.status for s in workflow.steps] == [
        StepStatus.COMPLETED,
        StepStatus.REJECTED,
        StepStatus.WAITING,
    ]
    assert [workflow.is_step_cancelled(i) for i in range(3)] == [False, False, True]
    document = await repo.get_document(workflow.document_id)
    assert document.status == DocumentStatus.REJECTED

    late = await ReturnProcessor(repo, config).process_return(_fill_in(package, "approved"))
    assert not late.success
    assert (await PackageBuilder(repo, config).generate_package(workflow_id)).error is not None
