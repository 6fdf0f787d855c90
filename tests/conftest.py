# Shared fixtures for approval gate tests

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

import pytest
from typer.testing import CliRunner

from approval_gate.config import SessionConfig
from approval_gate.keywords import clear_registry
from approval_gate.models import ApprovalIssue, Comment


@dataclass
class FakeIssueTracker:
    """
    In-memory IssueTracker.

    Each list_comments call consumes the next scripted snapshot; the last
    one repeats. A snapshot may be an exception instance, which is raised.
    """
    snapshots: list[Union[list[Comment], Exception]] = field(default_factory=list)
    create_error: Optional[Exception] = None
    close_error: Optional[Exception] = None
    teams: dict[str, list[str]] = field(default_factory=dict)

    created: list[dict] = field(default_factory=list)
    posted: list[str] = field(default_factory=list)
    closed: list[int] = field(default_factory=list)
    list_calls: int = 0
    timeouts: list[Optional[float]] = field(default_factory=list)

    def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        labels: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
    ) -> ApprovalIssue:
        self.timeouts.append(timeout)
        if self.create_error is not None:
            raise self.create_error
        self.created.append({
            "owner": owner,
            "repo": repo,
            "title": title,
            "body": body,
            "labels": labels,
        })
        number = len(self.created)
        return ApprovalIssue(
            number=number,
            url=f"https://github.com/{owner}/{repo}/issues/{number}",
            owner=owner,
            repo=repo,
        )

    def list_comments(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        timeout: Optional[float] = None,
    ) -> list[Comment]:
        self.timeouts.append(timeout)
        self.list_calls += 1
        if not self.snapshots:
            return []
        snapshot = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if isinstance(snapshot, Exception):
            raise snapshot
        return list(snapshot)

    def post_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        body: str,
        timeout: Optional[float] = None,
    ) -> None:
        if self.close_error is not None:
            raise self.close_error
        self.posted.append(body)

    def close_issue(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        timeout: Optional[float] = None,
    ) -> None:
        self.closed.append(issue_number)

    def team_members(
        self,
        org: str,
        team: str,
        timeout: Optional[float] = None,
    ) -> list[str]:
        return list(self.teams.get(f"{org}/{team}", []))


@pytest.fixture
def tracker() -> FakeIssueTracker:
    return FakeIssueTracker()


@pytest.fixture
def session_config() -> SessionConfig:
    """Fast-polling config with two approvers, unanimous."""
    return SessionConfig(
        owner="owner",
        repo="repo",
        approvers=("alice", "bob"),
        minimum_approvals=0,
        labels=(),
        poll_interval_seconds=0.01,
        timeout_seconds=5.0,
        issue_title="Manual approval required for workflow run 42",
        issue_body="Workflow is pending manual review.",
    )


@pytest.fixture(autouse=True)
def _reset_registry():
    """Keep process-wide custom words from leaking between tests."""
    clear_registry()
    yield
    clear_registry()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    return CliRunner()
