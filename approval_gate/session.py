"""
Approval session state machine.

This module handles:
- Opening the tracking issue
- Polling its comments on a fixed interval
- Evaluating the quorum on each snapshot
- Ending on approval, denial, timeout or cancellation
- Handing the terminal state to the ResultReporter exactly once

The session moves through these states:

┌─────────────┐  issue created   ┌─────────────┐
│   CREATED   │ ───────────────> │   POLLING   │
└─────────────┘                  └─────────────┘
                                        │
          ┌──────────────┬──────────────┼──────────────┐
          ▼              ▼              ▼              ▼
    ┌──────────┐   ┌──────────┐   ┌───────────┐   ┌───────────┐
    │ APPROVED │   │  DENIED  │   │ TIMED_OUT │   │ CANCELLED │
    └──────────┘   └──────────┘   └───────────┘   └───────────┘

The session is the only component that logs. Everything below it returns
values or raises.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import TYPE_CHECKING, Any, Callable, Optional

from approval_gate.errors import InvalidTransitionError, TrackerError
from approval_gate.keywords import KeywordMatcher, get_registry
from approval_gate.models import (
    ApprovalIssue,
    ApprovalStatus,
    Comment,
    Decision,
    Outcome,
    SessionState,
)
from approval_gate.quorum import evaluate, normalize_login, tally
from approval_gate.reporter import ResultReporter

if TYPE_CHECKING:
    from approval_gate.config import SessionConfig
    from approval_gate.github.tracker import IssueTracker
    from approval_gate.logger import EventLogger

logger = logging.getLogger(__name__)

DEFAULT_CALL_TIMEOUT_SECONDS = 30.0
MIN_CALL_TIMEOUT_SECONDS = 1.0

TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.CREATED: frozenset({SessionState.POLLING}),
    SessionState.POLLING: frozenset({
        SessionState.APPROVED,
        SessionState.DENIED,
        SessionState.TIMED_OUT,
        SessionState.CANCELLED,
    }),
    SessionState.APPROVED: frozenset(),
    SessionState.DENIED: frozenset(),
    SessionState.TIMED_OUT: frozenset(),
    SessionState.CANCELLED: frozenset(),
}

STATUS_STATES = {
    ApprovalStatus.APPROVED: SessionState.APPROVED,
    ApprovalStatus.DENIED: SessionState.DENIED,
}


class Wake(Enum):
    """Why a wait returned."""
    TICK = auto()                    # Poll interval elapsed
    DEADLINE = auto()                # Session timeout reached
    CANCELLED = auto()               # Caller requested cancellation


class Waiter:
    """
    Wait primitive racing the poll tick, the deadline and cancellation.

    Cancellation is a threading.Event, so cancel() may be called from a
    signal handler or another thread while wait() is blocked.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def wait(self, interval: float, deadline: float) -> Wake:
        """
        Block until the next tick, the deadline or cancellation.

        Args:
            interval: Seconds until the next tick.
            deadline: Absolute deadline on this waiter's clock.

        Returns:
            The first event to fire. Cancellation wins ties.
        """
        if self._cancelled.is_set():
            return Wake.CANCELLED

        remaining = deadline - self._clock()
        if remaining <= 0:
            return Wake.DEADLINE

        if self._cancelled.wait(min(interval, remaining)):
            return Wake.CANCELLED
        if remaining <= interval or self._clock() >= deadline:
            return Wake.DEADLINE
        return Wake.TICK


@dataclass
class SessionResult:
    """
    Result of a completed approval session.

    Attributes:
        state: Terminal state reached.
        issue: The tracking issue.
        outcome: Structured outcome handed to the workflow.
        polls: Number of comment snapshots fetched successfully.
        poll_errors: Tracker errors seen while polling (retried).
        report_error: Error from posting the closing comment, if any.
    """
    state: SessionState
    issue: ApprovalIssue
    outcome: Outcome
    polls: int = 0
    poll_errors: list[str] = field(default_factory=list)
    report_error: Optional[str] = None

    @property
    def approved(self) -> bool:
        return self.state is SessionState.APPROVED


class ApprovalSession:
    """
    Drives one tracking issue from creation to a terminal state.

    Single-threaded: run() owns the loop; cancel() is the only method meant
    to be called from elsewhere.
    """

    def __init__(
        self,
        config: SessionConfig,
        tracker: IssueTracker,
        reporter: Optional[ResultReporter] = None,
        event_logger: Optional[EventLogger] = None,
        clock: Callable[[], float] = time.monotonic,
        call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS,
    ) -> None:
        """
        Initialize the session.

        Args:
            config: Resolved session configuration.
            tracker: Issue tracker used for every remote call.
            reporter: Reporter for terminal side effects. Defaults to one
                that comments on and closes the issue.
            event_logger: Optional JSONL logger.
            clock: Monotonic clock, injectable for tests.
            call_timeout: Upper bound for a single tracker call.

        Raises:
            ConfigurationError: If registered custom words conflict with the
                configured vocabulary.
        """
        self.config = config
        self._tracker = tracker
        self._reporter = reporter or ResultReporter(tracker)
        self._event_logger = event_logger
        self._clock = clock
        self._call_timeout = call_timeout
        # Registered words are frozen in here; later registrations don't apply
        self.vocabulary = config.vocabulary.merge(get_registry().snapshot())
        self._matcher = KeywordMatcher(self.vocabulary)
        self._waiter = Waiter(clock)
        self._deadline: Optional[float] = None

        self.state = SessionState.CREATED
        self.issue: Optional[ApprovalIssue] = None
        self.votes: dict[str, Decision] = {}
        self.history: list[SessionState] = [SessionState.CREATED]
        self.polls = 0
        self.poll_errors: list[str] = []
        self._result: Optional[SessionResult] = None

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def _log(
        self,
        event_type: str,
        data: Optional[dict[str, Any]] = None,
        level: str = "info",
    ) -> None:
        """Log an event to the standard logger and the event log if configured."""
        issue_number = self.issue.number if self.issue is not None else None

        py_level = {
            "debug": logging.DEBUG,
            "warn": logging.WARNING,
            "error": logging.ERROR,
        }.get(level, logging.INFO)
        logger.log(py_level, "%s %s", event_type, data or "")

        if self._event_logger:
            self._event_logger.log(event_type, data, level=level, issue_number=issue_number)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, new_state: SessionState) -> None:
        if new_state not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Illegal transition {self.state.name} -> {new_state.name}"
            )
        self._log("transition", {"from": self.state.name, "to": new_state.name})
        self.state = new_state
        self.history.append(new_state)

    def cancel(self) -> None:
        """Request cancellation; observed at the next wait."""
        self._waiter.cancel()

    @property
    def cancelled(self) -> bool:
        return self._waiter.cancelled

    def _call_timeout_left(self) -> float:
        if self._deadline is None:
            return self._call_timeout
        remaining = self._deadline - self._clock()
        return min(self._call_timeout, max(remaining, MIN_CALL_TIMEOUT_SECONDS))

    # ------------------------------------------------------------------
    # Lifecycle steps
    # ------------------------------------------------------------------

    def open_issue(self) -> ApprovalIssue:
        """
        Create the tracking issue and enter POLLING.

        Raises:
            TrackerError: If the tracker cannot create the issue. The session
                stays CREATED.
            InvalidTransitionError: If the issue was already opened.
        """
        if self.state is not SessionState.CREATED:
            raise InvalidTransitionError(f"Issue already opened (state {self.state.name})")

        cfg = self.config
        try:
            issue = self._tracker.create_issue(
                cfg.owner,
                cfg.repo,
                cfg.issue_title,
                cfg.issue_body,
                labels=list(cfg.labels) or None,
                timeout=self._call_timeout_left(),
            )
        except TrackerError as e:
            self._log("issue_create_failed", {
                "error": str(e),
                "error_type": e.error_type.name,
            }, level="error")
            raise

        self.issue = issue
        self._log("issue_created", {"url": issue.url, "labels": list(cfg.labels)})
        self._transition(SessionState.POLLING)
        return issue

    def evaluate_snapshot(self, comments: list[Comment]) -> ApprovalStatus:
        """Evaluate a comment snapshot and remember the per-approver votes."""
        cfg = self.config
        latest = tally(comments, cfg.approvers, self._matcher)
        self.votes = {a: latest[normalize_login(a)] for a in cfg.approvers}
        return evaluate(comments, cfg.approvers, cfg.minimum_approvals, self._matcher)

    def poll_once(self) -> ApprovalStatus:
        """
        Fetch all comments and evaluate them.

        Raises:
            TrackerError: If the comments cannot be fetched.
            InvalidTransitionError: If the session is not POLLING.
        """
        if self.state is not SessionState.POLLING or self.issue is None:
            raise InvalidTransitionError(f"Cannot poll in state {self.state.name}")

        comments = self._tracker.list_comments(
            self.issue.owner,
            self.issue.repo,
            self.issue.number,
            timeout=self._call_timeout_left(),
        )
        self.polls += 1
        if self._waiter.cancelled:
            # Cancelled while the fetch was in flight; the snapshot is discarded
            self._log("poll_discarded", {"comments": len(comments)}, level="debug")
            return ApprovalStatus.PENDING

        status = self.evaluate_snapshot(comments)
        self._log("poll", {
            "comments": len(comments),
            "status": status.name,
            "approved_by": [a for a, d in self.votes.items() if d is Decision.APPROVE],
        }, level="debug")
        return status

    def _poll_loop(self) -> SessionState:
        """Poll until a terminal state is reached and return it."""
        assert self._deadline is not None
        interval = self.config.poll_interval_seconds

        while True:
            wake = self._waiter.wait(interval, self._deadline)
            if wake is Wake.CANCELLED:
                return SessionState.CANCELLED

            try:
                status = self.poll_once()
            except TrackerError as e:
                self.poll_errors.append(str(e))
                self._log("poll_failed", {
                    "error": str(e),
                    "error_type": e.error_type.name,
                    "recoverable": e.recoverable,
                }, level="warn" if e.recoverable else "error")
                status = ApprovalStatus.PENDING

            if self._waiter.cancelled:
                return SessionState.CANCELLED

            if status.is_terminal:
                return STATUS_STATES[status]

            if self._clock() >= self._deadline:
                return SessionState.TIMED_OUT

    def _finalize(self, terminal: SessionState) -> SessionResult:
        """Enter the terminal state and run reporter side effects once."""
        if self._result is not None:
            return self._result

        assert self.issue is not None
        self._transition(terminal)
        outcome = self._reporter.report(terminal, self.issue, self.votes)

        report_error = None
        try:
            self._reporter.close(outcome, self.issue, timeout=self._call_timeout)
        except TrackerError as e:
            report_error = str(e)
            self._log("close_failed", {
                "error": str(e),
                "error_type": e.error_type.name,
            }, level="warn")

        self._result = SessionResult(
            state=terminal,
            issue=self.issue,
            outcome=outcome,
            polls=self.polls,
            poll_errors=list(self.poll_errors),
            report_error=report_error,
        )
        self._log("terminal", {
            "state": terminal.name,
            "outcome": outcome.to_dict(),
            "polls": self.polls,
        })
        return self._result

    def run(self) -> SessionResult:
        """
        Run the whole session.

        Returns:
            SessionResult describing the terminal state.

        Raises:
            TrackerError: If the tracking issue cannot be created.
        """
        if self._result is not None:
            return self._result

        self._deadline = self._clock() + self.config.timeout_seconds
        self._log("session_start", {
            "approvers": list(self.config.approvers),
            "required_approvals": self.config.required_approvals,
            "timeout_seconds": self.config.timeout_seconds,
        })

        self.open_issue()
        terminal = self._poll_loop()
        return self._finalize(terminal)
