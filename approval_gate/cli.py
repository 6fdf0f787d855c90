"""Typer CLI for the approval gate.

Commands:
    run     - Open the tracking issue and wait for approval
    check   - Classify a comment body with the configured vocabulary
    labels  - Show how a labels input is parsed

Exit codes for `run`:
    0 - approved (or denied with fail-on-denial disabled)
    1 - denied, timed out or cancelled
    2 - configuration, tracker or output error before a decision
"""
from __future__ import annotations

import logging
import signal
from contextlib import contextmanager
from typing import Iterator, Optional
from urllib.parse import urlparse

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from approval_gate import __version__
from approval_gate.config import (
    GateConfig,
    build_session_config,
    load_config,
    resolve_approvers,
)
from approval_gate.errors import (
    ConfigurationError,
    OutputSinkError,
    TrackerError,
    get_user_action_message,
)
from approval_gate.github.tracker import GhIssueTracker
from approval_gate.keywords import KeywordMatcher, Vocabulary
from approval_gate.labels import parse_labels
from approval_gate.logger import EventLogger
from approval_gate.models import Decision, SessionState
from approval_gate.reporter import ResultReporter
from approval_gate.session import ApprovalSession, SessionResult

EXIT_APPROVED = 0
EXIT_REJECTED = 1
EXIT_ERROR = 2

app = typer.Typer(
    name="approval-gate",
    help="Pause a workflow until approvers respond on a GitHub issue",
    add_completion=False,
)

console = Console()


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"approval-gate version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """
    Approval Gate - manual approval for automated workflows.

    Opens a tracking issue and waits for approvers to comment
    "approve" or "deny".
    """


def exit_code_for(state: SessionState, fail_on_denial: bool = True) -> int:
    """Map a terminal session state to a process exit code."""
    if state is SessionState.APPROVED:
        return EXIT_APPROVED
    if state is SessionState.DENIED and not fail_on_denial:
        return EXIT_APPROVED
    return EXIT_REJECTED


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _tracker_for(config: GateConfig) -> GhIssueTracker:
    host = urlparse(config.github.server_url).hostname or ""
    return GhIssueTracker(
        token=config.github.token,
        hostname="" if host in ("", "github.com") else host,
    )


@contextmanager
def _cancel_on_signals(session: ApprovalSession) -> Iterator[None]:
    """Cancel the session on SIGINT/SIGTERM for the duration of the block."""
    def handler(signum: int, frame: object) -> None:
        console.print(f"[yellow]Received signal {signum}, cancelling...[/yellow]")
        session.cancel()

    previous = {
        sig: signal.signal(sig, handler)
        for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def _print_tracker_error(action: str, error: TrackerError) -> None:
    console.print(f"[red]{action}: {error}[/red]")
    if error.requires_user_action:
        console.print(get_user_action_message(error))


def _print_summary(result: SessionResult) -> None:
    colors = {
        SessionState.APPROVED: "green",
        SessionState.DENIED: "red",
        SessionState.TIMED_OUT: "yellow",
        SessionState.CANCELLED: "yellow",
    }
    color = colors.get(result.state, "white")

    table = Table(title="Approval Result", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", f"[{color}]{result.outcome.status}[/{color}]")
    table.add_row("Issue", f"#{result.issue.number} {result.issue.url}")
    table.add_row("Approved by", ", ".join(result.outcome.approved_by) or "-")
    table.add_row("Denied by", ", ".join(result.outcome.denied_by) or "-")
    table.add_row("Polls", str(result.polls))
    if result.poll_errors:
        table.add_row("Poll errors", str(len(result.poll_errors)))
    console.print(table)

    if result.report_error:
        console.print(f"[yellow]Could not close the issue: {result.report_error}[/yellow]")


@app.command()
def run(
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="YAML config file (default: approval-gate.yaml if present)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Log every poll",
    ),
) -> None:
    """Open the tracking issue and wait for approvers."""
    _configure_logging(verbose)

    try:
        config = load_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(EXIT_ERROR)

    tracker = _tracker_for(config)
    try:
        approvers = resolve_approvers(config, tracker)
        session_config = build_session_config(config, approvers)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(EXIT_ERROR)
    except TrackerError as e:
        _print_tracker_error("Could not resolve approvers", e)
        raise typer.Exit(EXIT_ERROR)

    event_logger = None
    if config.logs_path is not None:
        event_logger = EventLogger(config.github.run_id, config.logs_path)

    reporter = ResultReporter(
        tracker,
        output_path=config.output_path,
        fail_on_denial=config.approval.fail_on_denial,
    )
    session = ApprovalSession(
        session_config,
        tracker,
        reporter=reporter,
        event_logger=event_logger,
    )

    console.print(
        f"Waiting for approval from [bold]{', '.join(approvers)}[/bold] "
        f"({session_config.required_approvals} required)"
    )
    try:
        with _cancel_on_signals(session):
            result = session.run()
    except TrackerError as e:
        _print_tracker_error("Could not create approval issue", e)
        raise typer.Exit(EXIT_ERROR)

    _print_summary(result)

    try:
        if not reporter.write_outputs(result.outcome):
            console.print("[dim]No output file configured, skipping outputs[/dim]")
    except OutputSinkError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_ERROR)

    raise typer.Exit(exit_code_for(result.state, config.approval.fail_on_denial))


@app.command()
def check(
    body: str = typer.Argument(..., help="Comment body to classify"),
    approve_word: Optional[list[str]] = typer.Option(
        None,
        "--approve-word",
        help="Extra approval word (repeatable)",
    ),
    deny_word: Optional[list[str]] = typer.Option(
        None,
        "--deny-word",
        help="Extra denial word (repeatable)",
    ),
) -> None:
    """Show how a comment body would be classified."""
    try:
        vocabulary = Vocabulary.with_custom_words(approve_word or [], deny_word or [])
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(EXIT_ERROR)

    decision = KeywordMatcher(vocabulary).classify(body)
    color = {
        Decision.APPROVE: "green",
        Decision.DENY: "red",
        Decision.NEUTRAL: "dim",
    }[decision]
    console.print(f"[{color}]{decision.name.lower()}[/{color}]")


@app.command()
def labels(
    raw: str = typer.Argument(..., help="Comma-separated labels input"),
) -> None:
    """Show how a labels input is parsed."""
    parsed = parse_labels(raw)
    if not parsed:
        console.print("[dim]No labels[/dim]")
        return
    for label in parsed:
        console.print(label)


def cli_main() -> None:
    """Console script entry point."""
    app()
