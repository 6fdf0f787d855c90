"""
Issue tracker access for the approval gate.

This module provides:
- IssueTracker protocol consumed by the session, config and reporter
- GhIssueTracker, a GitHub implementation driving the gh CLI (`gh api`)

Every call takes an optional timeout so the session can keep calls inside
its overall deadline. Failures raise a classified TrackerError.
"""

from __future__ import annotations

import json
import os
import subprocess
from typing import Any, Optional, Protocol, Sequence

from approval_gate.errors import TrackerError, TrackerErrorClassifier, TrackerErrorType
from approval_gate.models import ApprovalIssue, Comment

DEFAULT_CALL_TIMEOUT_SECONDS = 30.0

COMMENT_JQ = ".[] | {id: .id, login: .user.login, body: .body}"


class IssueTracker(Protocol):
    """Operations the approval gate needs from an issue tracker."""

    def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        labels: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
    ) -> ApprovalIssue: ...

    def list_comments(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        timeout: Optional[float] = None,
    ) -> list[Comment]: ...

    def post_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        body: str,
        timeout: Optional[float] = None,
    ) -> None: ...

    def close_issue(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        timeout: Optional[float] = None,
    ) -> None: ...

    def team_members(
        self,
        org: str,
        team: str,
        timeout: Optional[float] = None,
    ) -> list[str]: ...


class GhIssueTracker:
    """
    GitHub issue tracker backed by the gh CLI.

    Uses `gh api` for every call so request bodies are sent exactly as built
    here; in particular an issue without labels carries no labels field.
    """

    def __init__(
        self,
        token: str = "",
        hostname: str = "",
        binary: str = "gh",
        default_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
    ) -> None:
        """
        Initialize the tracker.

        Args:
            token: Token exported to gh as GH_TOKEN. Empty uses gh's own auth.
            hostname: GitHub Enterprise host, exported as GH_HOST.
            binary: Path to the gh binary.
            default_timeout: Per-call timeout when the caller passes none.
        """
        self.token = token
        self.hostname = hostname
        self.binary = binary
        self.default_timeout = default_timeout

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self.token:
            env["GH_TOKEN"] = self.token
        if self.hostname:
            env["GH_HOST"] = self.hostname
        return env

    def _run_gh(
        self,
        args: list[str],
        timeout: Optional[float] = None,
        stdin: Optional[str] = None,
    ) -> str:
        """
        Run a gh CLI command and return its stdout.

        Raises:
            TrackerError: On a missing binary, timeout or non-zero exit.
        """
        timeout = self.default_timeout if timeout is None else timeout
        try:
            result = subprocess.run(
                [self.binary] + args,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=self._env(),
            )
        except FileNotFoundError:
            raise TrackerError(
                f"{self.binary} CLI not found",
                error_type=TrackerErrorType.CLI_NOT_FOUND,
            )
        except subprocess.TimeoutExpired:
            raise TrackerError(
                f"gh {args[0]} timed out after {timeout:.0f}s",
                error_type=TrackerErrorType.TIMEOUT,
            )

        if result.returncode != 0:
            raise TrackerErrorClassifier.create_error(
                f"gh {' '.join(args[:2])} failed",
                stderr=result.stderr or "",
                stdout=result.stdout or "",
                returncode=result.returncode,
            )
        return result.stdout

    def _api(
        self,
        path: str,
        method: str = "GET",
        payload: Optional[dict[str, Any]] = None,
        jq: Optional[str] = None,
        paginate: bool = False,
        timeout: Optional[float] = None,
    ) -> str:
        args = ["api", path, "--method", method]
        if paginate:
            args.append("--paginate")
        if jq:
            args.extend(["--jq", jq])
        stdin = None
        if payload is not None:
            args.extend(["--input", "-"])
            stdin = json.dumps(payload)
        return self._run_gh(args, timeout=timeout, stdin=stdin)

    @staticmethod
    def _parse_json(text: str, context: str) -> Any:
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise TrackerError(
                f"Invalid JSON from gh while {context}: {e}",
                error_type=TrackerErrorType.INVALID_RESPONSE,
            )

    def create_issue(
        self,
        owner: str,
        repo: str,
        title: str,
        body: str,
        labels: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
    ) -> ApprovalIssue:
        """
        Open the tracking issue.

        Returns:
            ApprovalIssue with the number and html URL GitHub assigned.
        """
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = list(labels)

        output = self._api(
            f"repos/{owner}/{repo}/issues",
            method="POST",
            payload=payload,
            timeout=timeout,
        )
        data = self._parse_json(output, "creating issue")
        try:
            return ApprovalIssue(
                number=int(data["number"]),
                url=str(data["html_url"]),
                owner=owner,
                repo=repo,
            )
        except (KeyError, TypeError, ValueError):
            raise TrackerError(
                "Issue response is missing number or html_url",
                error_type=TrackerErrorType.INVALID_RESPONSE,
            )

    def list_comments(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        timeout: Optional[float] = None,
    ) -> list[Comment]:
        """
        Fetch every comment on an issue, oldest first.

        Pages are flattened by jq into one JSON object per line.
        """
        output = self._api(
            f"repos/{owner}/{repo}/issues/{issue_number}/comments",
            jq=COMMENT_JQ,
            paginate=True,
            timeout=timeout,
        )
        comments = []
        for line in output.splitlines():
            line = line.strip()
            if not line:
                continue
            data = self._parse_json(line, "listing comments")
            comments.append(Comment(
                author=data.get("login") or "",
                body=data.get("body") or "",
                comment_id=int(data.get("id") or 0),
            ))
        return comments

    def post_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        body: str,
        timeout: Optional[float] = None,
    ) -> None:
        self._api(
            f"repos/{owner}/{repo}/issues/{issue_number}/comments",
            method="POST",
            payload={"body": body},
            timeout=timeout,
        )

    def close_issue(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        timeout: Optional[float] = None,
    ) -> None:
        self._api(
            f"repos/{owner}/{repo}/issues/{issue_number}",
            method="PATCH",
            payload={"state": "closed"},
            timeout=timeout,
        )

    def team_members(
        self,
        org: str,
        team: str,
        timeout: Optional[float] = None,
    ) -> list[str]:
        """Logins of an organization team's members."""
        output = self._api(
            f"orgs/{org}/teams/{team}/members",
            jq=".[].login",
            paginate=True,
            timeout=timeout,
        )
        return [line.strip() for line in output.splitlines() if line.strip()]
