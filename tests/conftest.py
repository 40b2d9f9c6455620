"""Shared fixtures for docroute tests."""

import pytest

from docroute.config import DocrouteConfig
from docroute.models import Document, DocumentType, Participant, ParticipantRole
from docroute.packaging import PackageBuilder
from docroute.persistence import InMemoryWorkflowRepository
from docroute.returns import ReturnProcessor
from docroute.service import StepConfig, WorkflowService

OWNER = Participant(name="Olive Owner", email="olive@example.com")
REVIEWER = Participant(name="Rita Reviewer", email="rita@example.com")
APPROVER = Participant(name="Alan Approver", email="alan@example.com")
SIGNER = Participant(name="Sam Signer", email="sam@example.com")


@pytest.fixture
def repo() -> InMemoryWorkflowRepository:
    return InMemoryWorkflowRepository()


@pytest.fixture
def config() -> DocrouteConfig:
    return DocrouteConfig()


@pytest.fixture
def three_steps() -> list[StepConfig]:
    return [
        StepConfig(participant=REVIEWER, role=ParticipantRole.REVIEWER),
        StepConfig(participant=APPROVER, role=ParticipantRole.APPROVER),
        StepConfig(participant=SIGNER, role=ParticipantRole.SIGNER),
    ]


@pytest.fixture
def create_workflow(repo, three_steps):
    """Store a text document and route it through ``steps``."""

    async def _create(steps=None, content="Quarterly report v1", deadline=None):
        document = Document(name="report.txt", type=DocumentType.TEXT, content=content)
        await repo.save_document(document)
        service = WorkflowService(repo)
        return await service.create_workflow(
            document.id,
            "Report sign-off",
            steps if steps is not None else three_steps,
            OWNER,
            deadline=deadline,
        )

    return _create


@pytest.fixture
def submit(repo, config):
    """Issue the package for the current step and send back a decision for it."""

    async def _submit(workflow_id, decision="approved", **extra):
        result = await PackageBuilder(repo, config).generate_package(workflow_id)
        assert result.success, result.message
        package = result.package
        payload = {
            "version": package.version,
            "packageId": package.package_id,
            "workflowId": workflow_id,
            "stepId": package.current_step.id,
            "decision": decision,
            "documentHash": package.security.document_hash,
            "chainHash": package.security.chain_hash,
        }
        payload.update(extra)
        return await ReturnProcessor(repo, config).process_return(payload)

    return _submit
