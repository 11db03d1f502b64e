"""Command line interface for inspecting approval workflows."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional

import typer

from procureflow import build_orchestrator, get_repository
from procureflow.errors import WorkflowError
from procureflow.registry import DefinitionStore, read_definitions
from procureflow.routing import select_active_levels

app = typer.Typer(help="CLI for Procureflow approval workflows")

# Command groups
definition_app = typer.Typer(help="Commands for workflow definitions")
instance_app = typer.Typer(help="Commands for approval instances")

app.add_typer(definition_app, name="definition")
app.add_typer(instance_app, name="instance")


@app.callback()
def main() -> None:
    """Procureflow CLI entry point."""
    pass


def _load_store(path: Path) -> DefinitionStore:
    if not path.exists():
        typer.secho("Specified path does not exist", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    store = DefinitionStore()
    try:
        for definition in read_definitions(path):
            store.save(definition)
    except WorkflowError as exc:
        typer.secho(f"Invalid definitions: {exc.message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return store


@definition_app.command("validate")
def definition_validate(path: Path) -> None:
    """
    Validate a YAML file of workflow definitions.

    Every workflow is checked the way it would be at save time: sequential
    level numbers, approver roles on every level, routing rules pointing at
    existing levels, and at most one default per document type.

    Example:
        procureflow definition validate guides/default_workflows.yaml
        # Output: purchase_order_standard v1 (purchase_order) levels [1, 2, 3, 4] default
    """
    store = _load_store(path)
    for definition in store.list(active_only=False):
        flags = " default" if definition.is_default else ""
        if not definition.is_usable:
            flags += " inactive"
        typer.echo(
            f"{definition.workflow_name} v{definition.version} "
            f"({definition.document_type}) levels "
            f"{[level.level_number for level in definition.levels]}{flags}"
        )
    typer.secho(f"{len(store)} workflow(s) valid", fg=typer.colors.GREEN)


@definition_app.command("routes")
def definition_routes(
    path: Path,
    document_type: str = typer.Option(..., help="Document type to route"),
    amount: float = typer.Option(0.0, help="Document amount"),
    workflow_name: Optional[str] = typer.Option(
        None, help="Route through this workflow instead of the default"
    ),
) -> None:
    """
    Show which approval levels a document would go through.

    Example:
        procureflow definition routes guides/default_workflows.yaml \\
            --document-type purchase_order --amount 250000
        # Output: 1  Procurement Manager  [procurement_manager] (any)
        #         ...
    """
    store = _load_store(path)
    try:
        definition = store.resolve(document_type, workflow_name)
        levels = select_active_levels(definition, amount)
    except WorkflowError as exc:
        typer.secho(exc.message, fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Workflow {definition.workflow_name} v{definition.version}")
    for level in levels:
        typer.echo(
            f"{level.level_number}\t{level.display_name}\t"
            f"[{', '.join(level.approver_roles)}] ({level.approval_mode})"
        )


@instance_app.command("list")
def instance_list(
    status: Optional[str] = typer.Option(None, help="Only show this status"),
    document_type: Optional[str] = typer.Option(None, help="Only show this type"),
) -> None:
    """
    List approval instances, newest first.

    Example:
        procureflow instance list --status pending
        # Output: 6f1c...  purchase_order  PO-2024-001  pending  level 2
    """
    repo = get_repository()
    instances = asyncio.run(
        repo.list_instances(status=status, document_type=document_type)
    )
    if not instances:
        typer.echo("No instances found")
        return
    for inst in instances:
        current = inst.current_level
        typer.echo(
            f"{inst.id}\t{inst.document_type}\t"
            f"{inst.document_number or inst.document_id}\t{inst.status}"
            + (f"\tlevel {current.level_number}" if current else "")
        )


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    """
    Show one approval instance with its levels and decision history.

    Example:
        procureflow instance show 6f1c...
    """
    repo = get_repository()
    inst = asyncio.run(repo.get_instance(instance_id))
    if inst is None:
        typer.echo("Instance not found")
        raise typer.Exit(code=1)
    typer.echo(
        f"Instance {inst.id}: {inst.status} (version {inst.version}, "
        f"{inst.progress_percentage}% complete)"
    )
    typer.echo(f"Document: {inst.document_type} {inst.document_number or inst.document_id}")
    if inst.routing_context:
        typer.echo(f"Routing: {inst.routing_context}")
    current = inst.current_level
    for level in inst.active_levels:
        marker = "*" if current and level.level_number == current.level_number else "-"
        typer.echo(f"{marker} {level.level_number} {level.display_name}")
    for d in inst.decisions:
        typer.echo(
            f"  level {d.level_number}: {d.decision} by {d.actor_id} "
            f"({d.timestamp})" + (f" - {d.comment}" if d.comment else "")
        )
    if inst.superseded_by:
        typer.echo(f"Superseded by: {inst.superseded_by}")


@app.command("pending")
def pending(
    user_id: str,
    role: Optional[List[str]] = typer.Option(
        None, help="Roles to query with instead of the configured ones"
    ),
    document_type: Optional[str] = typer.Option(None, help="Only show this type"),
) -> None:
    """
    List the approvals waiting on a user.

    Roles come from the ``roles`` mapping in config.yaml unless ``--role``
    is given.

    Example:
        procureflow pending alice
        procureflow pending bob --role cost_center
    """
    orchestrator = build_orchestrator()
    if role:
        instances = asyncio.run(
            orchestrator.queries.pending_for_roles(role, document_type=document_type)
        )
    else:
        instances = asyncio.run(
            orchestrator.pending_for(user_id, document_type=document_type)
        )
    if not instances:
        typer.echo(f"Nothing pending for {user_id}")
        return
    for inst in instances:
        level = inst.current_level
        typer.echo(
            f"{inst.id}\t{inst.document_type}\t"
            f"{inst.document_number or inst.document_id}\t{level.display_name}"
        )


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
