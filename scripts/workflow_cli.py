#!/usr/bin/env python3
"""
Workflow CLI - runs a workflow against a spec file, records the run as a
session and resumes paused sessions.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Tuple

import click

from config.manager import EnvironmentManager, configure_logging, env_manager
from utils.agent import CLIConfig, ClaudeCLIQuery
from utils.session import FileSystemSessionStorage, SessionManager, SessionStatus
from workflow_engine import RunResult, RunStatus, WorkflowEngine, WorkflowEngineError
from workflow_engine.types import QueryFunction

logger = logging.getLogger(__name__)

EXIT_FAILED = 1
EXIT_PAUSED = 2


def create_query_fn(env: EnvironmentManager) -> QueryFunction:
    """Query function agent steps dispatch to"""
    return ClaudeCLIQuery(
        CLIConfig(
            cli_path=env.get_setting("claude_cli_path", "claude"),
            timeout=env.get_setting("claude_cli_timeout"),
        )
    )


def create_session_manager(env: EnvironmentManager) -> SessionManager:
    return SessionManager(FileSystemSessionStorage(env.get_path_setting("sessions_dir")))


def print_summary(result: RunResult):
    """Print the outcome of a run."""
    click.echo(f"Status: {result.status.value}")
    click.echo(f"Completed phases: {', '.join(result.completed_phases) or '(none)'}")
    if result.error:
        click.echo(f"Error: {result.error}")
    if result.changed_files:
        click.echo("Changed files:")
        for file_path in result.changed_files:
            click.echo(f"  {file_path}")


def record_pause(sessions: SessionManager, result: RunResult):
    """Persist the blocker and checkpoint of a paused run."""
    sessions.write_blocker(result.blocker_details or "Workflow paused")
    checkpoint = result.checkpoint or {}
    variables = checkpoint.get("variables", {})
    saved = sessions.save_checkpoint(
        current_phase=result.paused_at_phase or "init",
        variables=variables,
        completed_phases=checkpoint.get("completedPhases", result.completed_phases),
        changed_files=checkpoint.get("changedFiles", result.changed_files),
        current_task_id=checkpoint.get("currentTaskId"),
        tasks_completed=variables.get("tasksCompleted") or [],
        tasks_pending=variables.get("tasksPending") or [],
    )
    click.echo(f"Workflow paused at phase '{result.paused_at_phase}'")
    click.echo(f"Blocker: {result.blocker_details}")
    if saved is not None:
        click.echo(saved.resume_instructions)


@click.group(help="Deterministic workflow runner for spec implementation")
@click.option("--log-level", default=None, help="Logging level (default: LOG_LEVEL setting)")
def cli(log_level):
    """Run workflows and inspect their sessions."""
    env_manager.load()
    configure_logging(log_level)


@cli.command()
@click.argument("spec_file", type=click.Path())
@click.option("--workflow", "-w", default="spec-implementation", help="Workflow name or YAML path")
@click.option("--dry-run", is_flag=True, default=False, help="Stop before the execute phase")
@click.option("--resume", "resume_id", default=None, help="Session ID to resume")
@click.option("--working-dir", type=click.Path(file_okay=False), default=None, help="Worktree agents run in")
@click.option("--workflow-dir", type=click.Path(file_okay=False), default=None, help="Base directory for workflow paths")
@click.option("--model", default=None, help="Default model for agent steps")
@click.option("--skip-step", "skip_steps", multiple=True, help="Step name to skip (repeatable)")
@click.option("--skip-checks", is_flag=True, default=False, help="Skip check steps")
@click.pass_context
def run(
    ctx,
    spec_file: str,
    workflow: str,
    dry_run: bool,
    resume_id: Optional[str],
    working_dir: Optional[str],
    workflow_dir: Optional[str],
    model: Optional[str],
    skip_steps: Tuple[str, ...],
    skip_checks: bool,
):
    """Run WORKFLOW against SPEC_FILE."""
    if working_dir:
        env_manager.settings["project_root"] = str(Path(working_dir).resolve())
    if workflow_dir:
        env_manager.settings["workflow_base_dir"] = str(Path(workflow_dir).resolve())
    if model:
        env_manager.settings["default_model"] = model

    sessions = create_session_manager(env_manager)
    project_root = env_manager.get_project_root()

    if resume_id:
        try:
            metadata = sessions.resume_session(resume_id)
        except ValueError as e:
            raise click.ClickException(str(e))
        checkpoint = sessions.load_checkpoint(resume_id)
        if checkpoint is None:
            raise click.ClickException(f"Session {resume_id} has no checkpoint to resume from")
        workflow = metadata.workflow or workflow
    else:
        metadata = sessions.create_session(
            spec_file=spec_file,
            worktree_path=str(project_root),
            workflow=workflow,
        )
        checkpoint = None

    config = env_manager.build_engine_config(
        dry_run=dry_run,
        skip_step_names=env_manager.get_list_setting("skip_step_names") + list(skip_steps),
        skip_checks=skip_checks or bool(env_manager.get_setting("skip_checks", False)),
        session_id=metadata.session_id,
        branch_name=metadata.branch_name,
    )
    engine = WorkflowEngine(
        config,
        create_query_fn(env_manager),
        audit_sink=sessions.append_audit_entry,
        checkpoint_saver=sessions.checkpoint_saver,
    )

    click.echo(f"Session: {metadata.session_id}")
    try:
        if checkpoint is not None:
            click.echo(f"Resuming from phase '{checkpoint.current_phase}'")
            result = asyncio.run(
                engine.resume(workflow, checkpoint.engine_checkpoint(), checkpoint.current_phase)
            )
        else:
            result = asyncio.run(engine.run(workflow, spec_file))
    except (WorkflowEngineError, ValueError, OSError) as e:
        logger.error(f"Workflow run failed: {e}", exc_info=True)
        sessions.complete_session(RunResult(status=RunStatus.FAILED, error=str(e)))
        click.echo(f"Error: {e}", err=True)
        ctx.exit(EXIT_FAILED)

    if result.status == RunStatus.PAUSED:
        record_pause(sessions, result)
        ctx.exit(EXIT_PAUSED)

    sessions.complete_session(result)
    print_summary(result)
    if result.status == RunStatus.FAILED:
        ctx.exit(EXIT_FAILED)


@cli.command()
@click.option(
    "--status",
    type=click.Choice([s.value for s in SessionStatus]),
    default=None,
    help="Only list sessions with this status",
)
@click.option("--limit", type=int, default=20, help="Maximum number of sessions (default: 20)")
@click.option("--working-dir", type=click.Path(file_okay=False), default=None, help="Project root")
def sessions(status, limit, working_dir):
    """List recorded sessions, most recent first."""
    if working_dir:
        env_manager.settings["project_root"] = str(Path(working_dir).resolve())

    manager = create_session_manager(env_manager)
    found = manager.list_sessions(
        status=SessionStatus(status) if status else None,
        limit=limit,
    )
    if not found:
        click.echo("No sessions found")
        return

    for metadata in found:
        click.echo(
            f"{metadata.session_id}  {metadata.status.value:<9}  "
            f"phase={metadata.current_phase}  spec={metadata.spec_file}"
        )


def main():
    cli()


if __name__ == "__main__":
    main()
