"""Text of the tracking issue and its closing comments."""

from __future__ import annotations

from typing import Sequence

from approval_gate.keywords import Vocabulary
from approval_gate.models import Outcome, SessionState


def _quoted(words: Sequence[str]) -> str:
    return ", ".join(f'"{w}"' for w in words)


def build_issue_title(run_id: int, custom_title: str = "") -> str:
    title = f"Manual approval required for workflow run {run_id}"
    if custom_title.strip():
        title = f"{title}: {custom_title.strip()}"
    return title


def build_issue_body(
    run_url: str,
    approvers: Sequence[str],
    minimum_approvals: int,
    vocabulary: Vocabulary,
    custom_body: str = "",
) -> str:
    """
    Body of the tracking issue.

    Lists the approvers, how many must approve and the words that count as
    approval or denial. Custom text from the workflow follows.
    """
    required = minimum_approvals or len(approvers)
    if required == len(approvers):
        needed = "all approvers"
    else:
        needed = f"{required} of {len(approvers)} approvers"

    lines = [
        "Workflow is pending manual review.",
        f"URL: {run_url}",
        "",
        f"Required approvers: [{', '.join(approvers)}]",
        f"Approval from {needed} is needed.",
        "",
        f"Respond {_quoted(vocabulary.display_approval_words())} to continue workflow "
        f"or {_quoted(vocabulary.display_denial_words())} to cancel.",
    ]
    if custom_body.strip():
        lines += ["", custom_body.strip()]
    return "\n".join(lines)


def closing_comment(outcome: Outcome, fail_on_denial: bool = True) -> str:
    """Comment posted on the tracking issue once the session ends."""
    status = outcome.status

    if status == SessionState.APPROVED.token:
        who = ", ".join(outcome.approved_by)
        return (
            f"Approved by {who}. Required approvals met, "
            "continuing workflow and closing this issue."
        )

    if status == SessionState.DENIED.token:
        who = ", ".join(outcome.denied_by)
        if fail_on_denial:
            return f"Request denied by {who}. Closing issue and failing workflow."
        return f"Request denied by {who}. Closing issue and continuing workflow."

    if status == SessionState.TIMED_OUT.token:
        return "Approval timed out. Closing issue and failing workflow."

    return "Workflow cancelled, closing issue."
