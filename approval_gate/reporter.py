"""
Result reporting for finished approval sessions.

Turns a terminal session state into:
- an Outcome record with a stable status token
- a closing comment, after which the tracking issue is closed
- key=value lines in the workflow output file (GITHUB_OUTPUT)
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Mapping, Optional

from approval_gate.errors import InvalidTransitionError, OutputSinkError
from approval_gate.issue_text import closing_comment
from approval_gate.models import ApprovalIssue, Decision, Outcome, SessionState

if TYPE_CHECKING:
    from approval_gate.github.tracker import IssueTracker


class ResultReporter:
    """
    Reports the outcome of an approval session.

    Does not log; failures propagate to the session, which decides what to
    record.
    """

    def __init__(
        self,
        tracker: Optional[IssueTracker] = None,
        output_path: str = "",
        fail_on_denial: bool = True,
    ) -> None:
        """
        Initialize the reporter.

        Args:
            tracker: Tracker used to comment on and close the issue.
            output_path: Workflow output file. Empty means no output sink.
            fail_on_denial: Whether a denial fails the workflow; only
                changes the closing comment wording here.
        """
        self._tracker = tracker
        self.output_path = output_path
        self.fail_on_denial = fail_on_denial

    def report(
        self,
        state: SessionState,
        issue: ApprovalIssue,
        votes: Optional[Mapping[str, Decision]] = None,
    ) -> Outcome:
        """
        Build the structured outcome for a terminal state.

        Args:
            state: Terminal session state.
            issue: The tracking issue.
            votes: Latest decision per approver, if any polls succeeded.

        Raises:
            InvalidTransitionError: If state is not terminal.
        """
        if not state.is_terminal:
            raise InvalidTransitionError(f"Cannot report non-terminal state {state.name}")

        votes = votes or {}
        return Outcome(
            status=state.token,
            issue_number=issue.number,
            issue_url=issue.url,
            approved_by=[a for a, d in votes.items() if d is Decision.APPROVE],
            denied_by=[a for a, d in votes.items() if d is Decision.DENY],
        )

    def close(
        self,
        outcome: Outcome,
        issue: ApprovalIssue,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Post the closing comment and close the tracking issue.

        Raises:
            TrackerError: If either call fails.
        """
        if self._tracker is None:
            return
        self._tracker.post_comment(
            issue.owner,
            issue.repo,
            issue.number,
            closing_comment(outcome, self.fail_on_denial),
            timeout=timeout,
        )
        self._tracker.close_issue(issue.owner, issue.repo, issue.number, timeout=timeout)

    def write_outputs(self, outcome: Outcome) -> bool:
        """
        Write outcome key/value pairs to the workflow output file.

        The file is recreated on every call, never appended to.

        Returns:
            True if outputs were written, False if no output path is configured.

        Raises:
            OutputSinkError: If a path is configured but cannot be written.
        """
        if not self.output_path:
            return False

        path = Path(self.output_path)
        lines = [f"{key}={value}" for key, value in outcome.outputs().items()]
        try:
            path.write_text("\n".join(lines) + "\n")
        except OSError as e:
            raise OutputSinkError(self.output_path, str(e))
        return True
