"""
Core data models for the approval gate.

This module defines the data structures shared by the matcher, evaluator,
session and reporter:
- Enums for comment decisions, approval status and session state
- Dataclasses for comments, the tracking issue and the terminal outcome
- JSON serialization support for the outcome record
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum, auto
from typing import Any


class Decision(Enum):
    """Classification of a single comment body."""
    APPROVE = auto()
    DENY = auto()
    NEUTRAL = auto()


class ApprovalStatus(Enum):
    """
    Result of evaluating a comment snapshot.

    PENDING is the only non-terminal value.
    """
    PENDING = auto()
    APPROVED = auto()
    DENIED = auto()

    @property
    def is_terminal(self) -> bool:
        return self is not ApprovalStatus.PENDING


class SessionState(Enum):
    """
    States of an approval session.

    CREATED -> POLLING -> {APPROVED, DENIED, TIMED_OUT, CANCELLED}
    """
    CREATED = auto()                 # Tracking issue not opened yet
    POLLING = auto()                 # Waiting for approver comments

    # Terminal
    APPROVED = auto()                # Quorum reached
    DENIED = auto()                  # An approver denied
    TIMED_OUT = auto()               # Deadline passed while pending
    CANCELLED = auto()               # Caller cancelled the run

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def token(self) -> str:
        """Stable string token exposed to the calling workflow."""
        return STATE_TOKENS[self]


TERMINAL_STATES = frozenset({
    SessionState.APPROVED,
    SessionState.DENIED,
    SessionState.TIMED_OUT,
    SessionState.CANCELLED,
})

STATE_TOKENS = {
    SessionState.CREATED: "created",
    SessionState.POLLING: "pending",
    SessionState.APPROVED: "approved",
    SessionState.DENIED: "denied",
    SessionState.TIMED_OUT: "timed-out",
    SessionState.CANCELLED: "cancelled",
}


@dataclass(frozen=True)
class Comment:
    """
    A comment on the tracking issue.

    Comments are evaluated in the order the tracker returns them.
    """
    author: str
    body: str
    comment_id: int = 0


@dataclass(frozen=True)
class ApprovalIssue:
    """The tracking issue assigned by the tracker."""
    number: int
    url: str
    owner: str
    repo: str

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class Outcome:
    """
    Structured record of a terminal session.

    The status token is one of approved, denied, timed-out, cancelled.
    """
    status: str
    issue_number: int
    issue_url: str
    approved_by: list[str] = field(default_factory=list)
    denied_by: list[str] = field(default_factory=list)

    def outputs(self) -> dict[str, str]:
        """Key/value pairs written to the workflow output file."""
        return {
            "approval-status": self.status,
            "issue-number": str(self.issue_number),
            "issue-url": self.issue_url,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)
