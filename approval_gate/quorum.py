"""
Quorum evaluation over a snapshot of issue comments.

Each approver's most recent comment is their vote. A single denial vetoes
the request outright; otherwise the request is approved once enough
approvers have approved.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from approval_gate.errors import ConfigurationError
from approval_gate.keywords import KeywordMatcher
from approval_gate.models import ApprovalStatus, Comment, Decision


def normalize_login(login: str) -> str:
    """Canonical form used for approver comparison."""
    return login.strip().lower()


def effective_threshold(approvers: Sequence[str], minimum_approvals: int) -> int:
    """
    Number of approvals required.

    Zero means every approver must approve.

    Raises:
        ConfigurationError: If there are no approvers or the minimum is invalid.
    """
    if not approvers:
        raise ConfigurationError("At least one approver is required")
    if minimum_approvals < 0:
        raise ConfigurationError(
            f"minimum approvals must be >= 0, got {minimum_approvals}"
        )
    if minimum_approvals > len(approvers):
        raise ConfigurationError(
            f"minimum approvals ({minimum_approvals}) exceeds the number of "
            f"approvers ({len(approvers)})"
        )
    return minimum_approvals or len(approvers)


def tally(
    comments: Iterable[Comment],
    approvers: Iterable[str],
    matcher: Optional[KeywordMatcher] = None,
) -> dict[str, Decision]:
    """
    Latest decision per approver.

    Args:
        comments: Comments in chronological order.
        approvers: Approver logins, any case.
        matcher: Keyword matcher; defaults to the built-in vocabulary.

    Returns:
        Mapping of normalized approver login to their latest Decision,
        in approver order. Approvers who never commented are NEUTRAL.
    """
    matcher = matcher or KeywordMatcher()
    votes = {normalize_login(a): Decision.NEUTRAL for a in approvers}

    for comment in comments:
        author = normalize_login(comment.author)
        if author not in votes:
            continue
        votes[author] = matcher.classify(comment.body)

    return votes


def evaluate(
    comments: Sequence[Comment],
    approvers: Sequence[str],
    minimum_approvals: int = 0,
    matcher: Optional[KeywordMatcher] = None,
) -> ApprovalStatus:
    """
    Evaluate a comment snapshot into an approval status.

    Args:
        comments: Comments in chronological order.
        approvers: Approver logins. Must not be empty.
        minimum_approvals: Approvals required; 0 means all approvers.
        matcher: Keyword matcher; defaults to the built-in vocabulary.

    Returns:
        DENIED if any approver's latest comment denies, APPROVED if the
        threshold is met, otherwise PENDING.

    Raises:
        ConfigurationError: If approvers is empty or the threshold is invalid.
    """
    unique = list(dict.fromkeys(normalize_login(a) for a in approvers))
    threshold = effective_threshold(unique, minimum_approvals)
    votes = tally(comments, unique, matcher)

    # Denial is a veto regardless of the threshold
    if any(d is Decision.DENY for d in votes.values()):
        return ApprovalStatus.DENIED

    approvals = sum(1 for d in votes.values() if d is Decision.APPROVE)
    if approvals >= threshold:
        return ApprovalStatus.APPROVED
    return ApprovalStatus.PENDING
