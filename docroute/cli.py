"""Command line interface for routing documents through workflows."""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, NoReturn, Optional

import typer

from .blockage import BlockageDetector
from .config import load_config
from .constants import PACKET_EXPIRY_WARNING_HOURS, UPCOMING_DEADLINE_DAYS
from .errors import DocrouteError, OperationResult
from .integrity import verify_workflow_integrity
from .models import (
    Document,
    DocumentType,
    Participant,
    ParticipantRecord,
    ParticipantRole,
    as_utc,
)
from .packaging import PackageBuilder, render_package_json
from .persistence import get_repository
from .returns import ReturnProcessor
from .service import StepConfig, WorkflowService
from .unblock import UnblockService

app = typer.Typer(help="CLI for docroute document workflows")

# Command groups
document_app = typer.Typer(help="Commands for managing documents")
participant_app = typer.Typer(help="Commands for managing the participant directory")
workflow_app = typer.Typer(help="Commands for managing workflows")
unblock_app = typer.Typer(help="Operator interventions on blocked workflows")
package_app = typer.Typer(help="Commands for issuing packages")
return_app = typer.Typer(help="Commands for importing return files")
template_app = typer.Typer(help="Commands for reusable workflow templates")

app.add_typer(document_app, name="document")
app.add_typer(participant_app, name="participant")
app.add_typer(workflow_app, name="workflow")
app.add_typer(unblock_app, name="unblock")
app.add_typer(package_app, name="package")
app.add_typer(return_app, name="return")
app.add_typer(template_app, name="template")

_EXTENSION_TYPES = {
    ".pdf": DocumentType.PDF,
    ".doc": DocumentType.WORD,
    ".docx": DocumentType.WORD,
    ".xls": DocumentType.EXCEL,
    ".xlsx": DocumentType.EXCEL,
    ".ppt": DocumentType.POWERPOINT,
    ".pptx": DocumentType.POWERPOINT,
    ".png": DocumentType.IMAGE,
    ".jpg": DocumentType.IMAGE,
    ".jpeg": DocumentType.IMAGE,
    ".gif": DocumentType.IMAGE,
    ".txt": DocumentType.TEXT,
    ".md": DocumentType.TEXT,
}


@app.callback()
def main() -> None:
    """docroute CLI entry point."""
    config = load_config()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED)
    raise typer.Exit(code=1)


def _report(result: OperationResult) -> None:
    if not result.success:
        kind = result.error.value if result.error else "error"
        _fail(f"{result.message} [{kind}]")
    typer.secho(result.message, fg=typer.colors.GREEN)


def _parse_participant(value: str) -> Participant:
    """Parse ``Name:email`` into a participant."""
    name, sep, email = value.rpartition(":")
    if not sep or not name or not email:
        raise typer.BadParameter(f"Expected 'Name:email', got {value!r}")
    return Participant(name=name, email=email)


def _parse_step(value: str) -> StepConfig:
    """Parse ``role:Name:email`` into a step definition."""
    role, sep, rest = value.partition(":")
    if not sep:
        raise typer.BadParameter(f"Expected 'role:Name:email', got {value!r}")
    try:
        parsed_role = ParticipantRole(role.lower())
    except ValueError:
        raise typer.BadParameter(
            f"Unknown role {role!r}; use one of {', '.join(r.value for r in ParticipantRole)}"
        )
    return StepConfig(participant=_parse_participant(rest), role=parsed_role)


# ---------------------------------------------------------------------------
# Documents


@document_app.command("add")
def document_add(
    path: Path,
    name: Optional[str] = typer.Option(None, help="Display name (default: file name)"),
) -> None:
    """Store a file as a draft document ready to be routed."""
    if not path.exists():
        _fail("Specified path does not exist")

    raw = path.read_bytes()
    mime_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    document = Document(
        name=name or path.name,
        type=_EXTENSION_TYPES.get(path.suffix.lower(), DocumentType.OTHER),
        mime_type=mime_type,
        content=f"data:{mime_type};base64,{base64.b64encode(raw).decode('ascii')}",
        size=len(raw),
    )
    repo = get_repository()
    asyncio.run(repo.save_document(document))
    typer.echo(f"Document added: {document.id}")


@document_app.command("list")
def document_list() -> None:
    """List documents with their status and routing workflow."""
    repo = get_repository()
    documents = asyncio.run(repo.list_documents())
    if not documents:
        typer.echo("No documents found")
        return
    for doc in documents:
        typer.echo(f"{doc.id}\t{doc.status.value}\t{doc.name}\t{doc.workflow_id or '-'}")


# ---------------------------------------------------------------------------
# Participants


@participant_app.command("add")
def participant_add(
    name: str,
    email: str,
    organization: Optional[str] = typer.Option(None),
    role: List[ParticipantRole] = typer.Option([], help="Role(s) the participant can hold"),
) -> None:
    """Add or update a participant directory entry."""
    repo = get_repository()
    record = asyncio.run(repo.get_participant(email))
    if record is None:
        record = ParticipantRecord(name=name, email=email)
    record.name = name
    record.organization = organization or record.organization
    for r in role:
        if r not in record.roles:
            record.roles.append(r)
    asyncio.run(repo.save_participant(record))
    typer.echo(f"Participant saved: {email}")


@participant_app.command("absent")
def participant_absent(
    email: str,
    start: Optional[datetime] = typer.Option(None, help="Absence start"),
    end: Optional[datetime] = typer.Option(None, help="Absence end"),
    substitute: Optional[str] = typer.Option(None, help="E-mail of the substitute"),
) -> None:
    """Mark a participant absent, optionally within a window."""
    repo = get_repository()
    record = asyncio.run(repo.get_participant(email))
    if record is None:
        _fail("Participant not found")
    record.is_absent = True
    record.absence_start = as_utc(start) if start else None
    record.absence_end = as_utc(end) if end else None
    record.substitute_email = substitute
    asyncio.run(repo.save_participant(record))
    typer.echo(f"{record.name} marked absent")


@participant_app.command("present")
def participant_present(email: str) -> None:
    """Clear a participant's absence."""
    repo = get_repository()
    record = asyncio.run(repo.get_participant(email))
    if record is None:
        _fail("Participant not found")
    record.is_absent = False
    record.absence_start = None
    record.absence_end = None
    record.substitute_email = None
    asyncio.run(repo.save_participant(record))
    typer.echo(f"{record.name} marked present")


# ---------------------------------------------------------------------------
# Workflows


@workflow_app.command("create")
def workflow_create(
    document_id: str,
    name: str,
    step: List[str] = typer.Option(..., help="Step as 'role:Name:email', in order"),
    owner: str = typer.Option(..., help="Owner as 'Name:email'"),
    deadline: Optional[datetime] = typer.Option(None),
) -> None:
    """
    Create a workflow routing a document through ordered steps.

    Example:
        docroute workflow create <doc-id> "Contract" \\
            --owner "Olive Owner:olive@example.com" \\
            --step "reviewer:Rita:rita@example.com" \\
            --step "signer:Sam:sam@example.com"
    """
    steps = [_parse_step(s) for s in step]
    service = WorkflowService(get_repository())
    try:
        workflow = asyncio.run(
            service.create_workflow(
                document_id, name, steps, _parse_participant(owner), deadline=deadline
            )
        )
    except (DocrouteError, ValueError) as exc:
        _fail(str(exc))
    typer.echo(f"Workflow created: {workflow.id}")


@workflow_app.command("list")
def workflow_list() -> None:
    """List all workflows with their progress."""
    service = WorkflowService(get_repository())
    workflows = asyncio.run(service.list_workflows())
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        state = "completed" if wf.is_completed else f"step {wf.current_step_index + 1}/{len(wf.steps)}"
        typer.echo(f"{wf.id}\t{state}\t{wf.name}")


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """Show the steps of a workflow and their status."""
    service = WorkflowService(get_repository())
    wf = asyncio.run(service.get_workflow(workflow_id))
    if wf is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {wf.id}: {wf.name}")
    if wf.deadline:
        typer.echo(f"Deadline: {wf.deadline.isoformat()}")
    if wf.cancelled_at:
        typer.echo(f"Cancelled: {wf.cancel_reason or 'no reason given'}")
    elif wf.is_completed:
        typer.echo(f"Completed at {wf.completed_at.isoformat()}")
    if wf.awaiting_correction:
        typer.echo("Awaiting correction from the owner")
    for i, s in enumerate(wf.steps):
        status = "cancelled" if wf.is_step_cancelled(i) else s.status.value
        marker = "*" if i == wf.current_step_index and not wf.is_completed else "-"
        typer.echo(
            f"{marker} {s.order}. {s.participant.name} <{s.participant.email}> "
            f"({s.role.value}): {status}"
        )


@workflow_app.command("resubmit")
def workflow_resubmit(
    workflow_id: str, note: Optional[str] = typer.Option(None, help="Note for the participant")
) -> None:
    """Send a corrected document back to the step that requested changes."""
    service = WorkflowService(get_repository())
    _report(asyncio.run(service.resubmit_step(workflow_id, note=note)))


@workflow_app.command("verify")
def workflow_verify(workflow_id: str) -> None:
    """Recompute document and chain hashes against the issued packages."""
    repo = get_repository()
    wf = asyncio.run(repo.get_workflow(workflow_id))
    if wf is None:
        _fail("Workflow not found")
    document = asyncio.run(repo.get_document(wf.document_id))
    if document is None:
        _fail("Document not found")
    report = verify_workflow_integrity(document, wf)
    if not report.valid:
        for error in report.errors:
            typer.secho(error, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.secho("Integrity verified", fg=typer.colors.GREEN)


@workflow_app.command("activity")
def workflow_activity(workflow_id: Optional[str] = typer.Argument(None)) -> None:
    """Print the activity log, optionally for one workflow."""
    repo = get_repository()
    entries = asyncio.run(repo.list_activities(workflow_id))
    if not entries:
        typer.echo("No activity recorded")
        return
    for entry in entries:
        typer.echo(f"{entry.timestamp.isoformat()}\t{entry.type.value}\t{entry.description}")


# ---------------------------------------------------------------------------
# Blockage and interventions


@app.command("blocked")
def blocked() -> None:
    """List workflows stalled by an absent participant or a passed deadline."""
    detector = BlockageDetector(get_repository())
    found = asyncio.run(detector.detect_blocked_workflows())
    if not found:
        typer.echo("No blocked workflows")
        return
    for info in found:
        line = (
            f"{info.workflow_id}\t{info.reason}\tstep {info.blocked_step_index + 1}\t"
            f"{info.blocked_participant.email}"
        )
        if info.substitute_available:
            line += f"\tsubstitute: {info.substitute_available.email}"
        typer.echo(line)


@app.command("attention")
def attention(
    within_hours: int = typer.Option(
        PACKET_EXPIRY_WARNING_HOURS, help="Warn about packages expiring within this many hours"
    ),
    deadline_days: int = typer.Option(
        UPCOMING_DEADLINE_DAYS, help="Warn about deadlines within this many days"
    ),
) -> None:
    """List packages close to expiry and deadlines coming up."""
    detector = BlockageDetector(get_repository())
    report = asyncio.run(
        detector.steps_needing_attention(
            within=timedelta(hours=within_hours), deadline_days=deadline_days
        )
    )
    if report.is_empty:
        typer.echo("Nothing needs attention")
        return
    for item in report.expired:
        typer.secho(
            f"{item.workflow_id}\texpired\tstep {item.step_index + 1}\t{item.participant.email}",
            fg=typer.colors.RED,
        )
    for item in report.expiring_soon:
        hours = int(item.time_remaining.total_seconds() // 3600)
        typer.echo(
            f"{item.workflow_id}\texpires in {hours}h\tstep {item.step_index + 1}\t"
            f"{item.participant.email}"
        )
    for item in report.upcoming_deadlines:
        typer.echo(
            f"{item.workflow_id}\tdeadline in {item.days_remaining} day(s)\t{item.document_name}"
        )


@unblock_app.command("reassign")
def unblock_reassign(workflow_id: str, step_number: int, name: str, email: str) -> None:
    """Hand a step to another participant."""
    service = UnblockService(get_repository())
    participant = Participant(name=name, email=email)
    _report(asyncio.run(service.reassign_step(workflow_id, step_number - 1, participant)))


@unblock_app.command("skip")
def unblock_skip(
    workflow_id: str,
    step_number: int,
    reason: str = typer.Option(..., help="Why the step is skipped"),
) -> None:
    """Skip the active step and advance the workflow."""
    service = UnblockService(get_repository())
    _report(asyncio.run(service.skip_step(workflow_id, step_number - 1, reason)))


@unblock_app.command("extend-deadline")
def unblock_extend_deadline(workflow_id: str, deadline: datetime) -> None:
    """Move the workflow deadline."""
    service = UnblockService(get_repository())
    _report(asyncio.run(service.extend_deadline(workflow_id, deadline)))


@unblock_app.command("extend-packet")
def unblock_extend_packet(
    workflow_id: str,
    step_number: int,
    days: int = typer.Option(7, help="Additional days"),
) -> None:
    """Extend the expiry of the package issued for a step."""
    service = UnblockService(get_repository())
    _report(asyncio.run(service.extend_packet_expiration(workflow_id, step_number - 1, days)))


@unblock_app.command("cancel")
def unblock_cancel(workflow_id: str, reason: Optional[str] = typer.Option(None)) -> None:
    """Terminate a workflow; unfinished steps are cancelled."""
    service = UnblockService(get_repository())
    _report(asyncio.run(service.cancel_workflow(workflow_id, reason)))


# ---------------------------------------------------------------------------
# Packages and returns


@package_app.command("generate")
def package_generate(
    workflow_id: str,
    output: Optional[Path] = typer.Option(None, help="File to write (default: stdout)"),
) -> None:
    """Issue the package for the current step of a workflow."""
    builder = PackageBuilder(get_repository())
    result = asyncio.run(builder.generate_package(workflow_id))
    if not result.success or result.package is None:
        _report(result)
        return
    payload = render_package_json(result.package)
    if output is None:
        typer.echo(payload)
        return
    output.write_text(payload, encoding="utf-8")
    typer.echo(f"Package {result.package.package_id} written to {output}")


@return_app.command("process")
def return_process(path: Path) -> None:
    """Merge a return file produced by a participant."""
    if not path.exists():
        _fail("Specified path does not exist")
    processor = ReturnProcessor(get_repository())
    result = asyncio.run(processor.process_return(path.read_bytes()))
    if not result.success:
        kind = result.error.value if result.error else "error"
        _fail(f"{result.message} [{kind}]")
    if result.integrity_mismatch:
        typer.secho("Warning: merged despite an integrity mismatch", fg=typer.colors.YELLOW)
    typer.secho(result.message, fg=typer.colors.GREEN)


# ---------------------------------------------------------------------------
# Templates


def _parse_step_participant(value: str) -> tuple[int, Participant]:
    """Parse ``N:Name:email`` (1-based step number) into an override."""
    number, sep, rest = value.partition(":")
    if not sep or not number.isdigit() or int(number) < 1:
        raise typer.BadParameter(f"Expected 'N:Name:email', got {value!r}")
    return int(number) - 1, _parse_participant(rest)


@template_app.command("list")
def template_list() -> None:
    """List templates, newest first."""
    templates = asyncio.run(WorkflowService(get_repository()).list_templates())
    if not templates:
        typer.echo("No templates found")
        return
    for template in templates:
        typer.echo(
            f"{template.id}\t{template.name}\t{len(template.steps)} steps\tused {template.usage_count}x"
        )


@template_app.command("save")
def template_save(
    workflow_id: str,
    name: str,
    description: Optional[str] = typer.Option(None),
) -> None:
    """Save the steps of an existing workflow as a template."""
    service = WorkflowService(get_repository())
    try:
        template = asyncio.run(service.save_as_template(workflow_id, name, description))
    except DocrouteError as exc:
        _fail(str(exc))
    typer.echo(f"Template saved: {template.id}")


@template_app.command("use")
def template_use(
    template_id: str,
    document_id: str,
    owner: str = typer.Option(..., help="Owner as 'Name:email'"),
    name: Optional[str] = typer.Option(None, help="Workflow name (default: template name)"),
    deadline: Optional[datetime] = typer.Option(None),
    participant: List[str] = typer.Option([], help="Override as 'N:Name:email'"),
) -> None:
    """Create a workflow for a document from a template."""
    overrides = dict(_parse_step_participant(p) for p in participant)
    service = WorkflowService(get_repository())
    try:
        workflow = asyncio.run(
            service.create_from_template(
                template_id,
                document_id,
                _parse_participant(owner),
                name=name,
                deadline=deadline,
                participants=overrides,
            )
        )
    except (DocrouteError, ValueError) as exc:
        _fail(str(exc))
    typer.echo(f"Workflow created: {workflow.id}")


@template_app.command("delete")
def template_delete(template_id: str) -> None:
    """Delete a template."""
    if not asyncio.run(WorkflowService(get_repository()).delete_template(template_id)):
        _fail("Template not found")
    typer.echo("Template deleted")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
