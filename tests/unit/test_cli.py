import asyncio
import json
import re

import pytest
from typer.testing import CliRunner

import docroute.persistence as persistence
from docroute.cli import app
from docroute.models import DocumentStatus, StepStatus
from docroute.persistence import InMemoryWorkflowRepository

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    for name in ["DOCROUTE_CONFIG", "DOCROUTE_DATABASE_URL", "DATABASE_URL", "DOCROUTE_LOG_LEVEL"]:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def _setup_repo() -> InMemoryWorkflowRepository:
    repo = InMemoryWorkflowRepository()
    persistence._repository_instance = repo
    return repo


def _invoke(*args):
    return runner.invoke(app, list(args))


def _add_document(tmp_path) -> str:
    source = tmp_path / "contract.txt"
    source.write_text("Terms and conditions")
    result = _invoke("document", "add", str(source))
    assert result.exit_code == 0, result.stdout
    return re.search(r"Document added: (\S+)", result.stdout).group(1)


def _create_workflow(document_id: str) -> str:
    result = _invoke(
        "workflow",
        "create",
        document_id,
        "Contract sign-off",
        "--owner",
        "Olive Owner:olive@example.com",
        "--step",
        "reviewer:Rita Reviewer:rita@example.com",
        "--step",
        "signer:Sam Signer:sam@example.com",
    )
    assert result.exit_code == 0, result.stdout
    return re.search(r"Workflow created: (\S+)", result.stdout).group(1)


def test_document_add_stores_data_url(tmp_path):
    repo = _setup_repo()
    document_id = _add_document(tmp_path)

    document = asyncio.run(repo.get_document(document_id))
    assert document.content.startswith("data:text/plain;base64,")
    assert document.type.value == "text"
    assert document.size == len("Terms and conditions")

    listed = _invoke("document", "list")
    assert document_id in listed.stdout
    assert "draft" in listed.stdout


def test_document_add_missing_file(tmp_path):
    _setup_repo()
    result = _invoke("document", "add", str(tmp_path / "nope.pdf"))
    assert result.exit_code == 1
    assert "does not exist" in result.stdout


def test_workflow_create_show_and_list(tmp_path):
    repo = _setup_repo()
    workflow_id = _create_workflow(_add_document(tmp_path))

    shown = _invoke("workflow", "show", workflow_id)
    assert shown.exit_code == 0
    assert "Rita Reviewer" in shown.stdout
    assert "pending" in shown.stdout
    assert "waiting" in shown.stdout

    listed = _invoke("workflow", "list")
    assert workflow_id in listed.stdout
    assert "step 1/2" in listed.stdout

    missing = _invoke("workflow", "show", "missing-id")
    assert missing.exit_code == 1
    assert "Workflow not found" in missing.stdout

    participant = asyncio.run(repo.get_participant("sam@example.com"))
    assert participant is not None


def test_workflow_create_rejects_unknown_role(tmp_path):
    _setup_repo()
    document_id = _add_document(tmp_path)
    result = _invoke(
        "workflow", "create", document_id, "Bad", "--owner", "Olive:olive@example.com",
        "--step", "juggler:Jo:jo@example.com",
    )
    assert result.exit_code != 0


def test_package_and_return_round(tmp_path):
    repo = _setup_repo()
    workflow_id = _create_workflow(_add_document(tmp_path))
    package_path = tmp_path / "package.json"

    generated = _invoke("package", "generate", workflow_id, "--output", str(package_path))
    assert generated.exit_code == 0, generated.stdout
    package = json.loads(package_path.read_text())
    assert package["currentStep"]["order"] == 1

    return_path = tmp_path / "return.json"
    return_path.write_text(
        json.dumps(
            {
                "version": package["version"],
                "workflowId": workflow_id,
                "stepId": package["currentStep"]["id"],
                "decision": "reviewed",
                "documentHash": package["security"]["documentHash"],
            }
        )
    )
    processed = _invoke("return", "process", str(return_path))
    assert processed.exit_code == 0, processed.stdout
    assert "Step 1 completed" in processed.stdout

    again = _invoke("return", "process", str(return_path))
    assert again.exit_code == 1
    assert "stale_state" in again.stdout

    workflow = asyncio.run(repo.get_workflow(workflow_id))
    assert workflow.steps[0].status == StepStatus.COMPLETED

    verified = _invoke("workflow", "verify", workflow_id)
    assert verified.exit_code == 0
    assert "Integrity verified" in verified.stdout

    activity = _invoke("workflow", "activity", workflow_id)
    assert "return_imported" in activity.stdout


def test_package_generate_prints_json_to_stdout(tmp_path):
    _setup_repo()
    workflow_id = _create_workflow(_add_document(tmp_path))
    result = _invoke("package", "generate", workflow_id)
    assert result.exit_code == 0
    assert '"packageId"' in result.stdout


def test_unblock_commands(tmp_path):
    repo = _setup_repo()
    workflow_id = _create_workflow(_add_document(tmp_path))

    reassigned = _invoke("unblock", "reassign", workflow_id, "1", "Sue Sub", "sue@example.com")
    assert reassigned.exit_code == 0, reassigned.stdout

    no_reason = _invoke("unblock", "skip", workflow_id, "1", "--reason", " ")
    assert no_reason.exit_code == 1
    assert "invalid_input" in no_reason.stdout

    extended = _invoke("unblock", "extend-deadline", workflow_id, "2030-01-31")
    assert extended.exit_code == 0, extended.stdout

    no_packet = _invoke("unblock", "extend-packet", workflow_id, "1")
    assert no_packet.exit_code == 1

    skipped = _invoke("unblock", "skip", workflow_id, "1", "--reason", "Fast track")
    assert skipped.exit_code == 0

    cancelled = _invoke("unblock", "cancel", workflow_id, "--reason", "Withdrawn")
    assert cancelled.exit_code == 0
    workflow = asyncio.run(repo.get_workflow(workflow_id))
    assert workflow.steps[0].participant.email == "sue@example.com"
    assert workflow.is_completed
    document = asyncio.run(repo.get_document(workflow.document_id))
    assert document.status == DocumentStatus.REJECTED

    shown = _invoke("workflow", "show", workflow_id)
    assert "cancelled" in shown.stdout

    stale = _invoke("unblock", "cancel", workflow_id)
    assert stale.exit_code == 1


def test_blocked_lists_absent_participant(tmp_path):
    _setup_repo()
    workflow_id = _create_workflow(_add_document(tmp_path))

    assert "No blocked workflows" in _invoke("blocked").stdout

    _invoke("participant", "add", "Sue Sub", "sue@example.com", "--role", "reviewer")
    absent = _invoke("participant", "absent", "rita@example.com", "--substitute", "sue@example.com")
    assert absent.exit_code == 0, absent.stdout

    blocked = _invoke("blocked")
    assert workflow_id in blocked.stdout
    assert "absent" in blocked.stdout
    assert "sue@example.com" in blocked.stdout

    _invoke("participant", "present", "rita@example.com")
    assert "No blocked workflows" in _invoke("blocked").stdout

    unknown = _invoke("participant", "absent", "ghost@example.com")
    assert unknown.exit_code == 1


def test_resubmit_command_reports_stale(tmp_path):
    _setup_repo()
    workflow_id = _create_workflow(_add_document(tmp_path))
    result = _invoke("workflow", "resubmit", workflow_id)
    assert result.exit_code == 1
    assert "not awaiting a correction" in result.stdout


def test_attention_reports_expiring_package(tmp_path):
    repo = _setup_repo()
    workflow_id = _create_workflow(_add_document(tmp_path))

    assert "Nothing needs attention" in _invoke("attention").stdout

    assert _invoke("package", "generate", workflow_id).exit_code == 0
    result = _invoke("attention", "--within-hours", str(24 * 30))
    assert result.exit_code == 0
    assert workflow_id in result.stdout
    assert "expires in" in result.stdout
    assert "rita@example.com" in result.stdout

    workflow = asyncio.run(repo.get_workflow(workflow_id))
    assert workflow.steps[0].packet is not None


def test_template_save_use_and_delete(tmp_path):
    repo = _setup_repo()
    workflow_id = _create_workflow(_add_document(tmp_path))

    saved = _invoke("template", "save", workflow_id, "Contract chain")
    assert saved.exit_code == 0, saved.stdout
    template_id = re.search(r"Template saved: (\S+)", saved.stdout).group(1)

    other = tmp_path / "other.txt"
    other.write_text("Second contract")
    document_id = re.search(
        r"Document added: (\S+)", _invoke("document", "add", str(other)).stdout
    ).group(1)
    used = _invoke(
        "template", "use", template_id, document_id,
        "--owner", "Olive Owner:olive@example.com",
        "--participant", "2:Sue Signer:sue@example.com",
    )
    assert used.exit_code == 0, used.stdout
    new_id = re.search(r"Workflow created: (\S+)", used.stdout).group(1)

    workflow = asyncio.run(repo.get_workflow(new_id))
    assert workflow.name == "Contract chain"
    assert workflow.steps[1].participant.email == "sue@example.com"

    listed = _invoke("template", "list")
    assert "Contract chain" in listed.stdout
    assert "used 1x" in listed.stdout

    assert _invoke("template", "delete", template_id).exit_code == 0
    missing = _invoke("template", "delete", template_id)
    assert missing.exit_code == 1
    assert "Template not found" in missing.stdout
