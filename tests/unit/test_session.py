"""
Unit tests for the approval session state machine.

Tests cover:
- The transition table
- Issue creation (labels omitted when empty, fatal failures)
- Polling to approved / denied / timed out / cancelled
- Transient tracker errors during polling
- Terminal side effects running exactly once
- The Waiter primitive
"""

from __future__ import annotations

import dataclasses
import json
import threading
import time

import pytest

from approval_gate.errors import (
    ConfigurationError,
    InvalidTransitionError,
    TrackerError,
    TrackerErrorType,
)
from approval_gate.keywords import Vocabulary, get_registry
from approval_gate.logger import EventLogger
from approval_gate.models import ApprovalStatus, Comment, SessionState
from approval_gate.reporter import ResultReporter
from approval_gate.session import (
    TRANSITIONS,
    ApprovalSession,
    Waiter,
    Wake,
)


class FakeClock:
    """Clock that advances a fixed step every time it is read."""

    def __init__(self, step: float = 0.0) -> None:
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class TestTransitions:
    """Tests for the explicit transition table."""

    def test_created_only_goes_to_polling(self):
        assert TRANSITIONS[SessionState.CREATED] == {SessionState.POLLING}

    def test_polling_goes_to_every_terminal_state(self):
        assert TRANSITIONS[SessionState.POLLING] == {
            SessionState.APPROVED,
            SessionState.DENIED,
            SessionState.TIMED_OUT,
            SessionState.CANCELLED,
        }

    @pytest.mark.parametrize("state", [
        SessionState.APPROVED,
        SessionState.DENIED,
        SessionState.TIMED_OUT,
        SessionState.CANCELLED,
    ])
    def test_terminal_states_have_no_exits(self, state):
        assert state.is_terminal
        assert TRANSITIONS[state] == frozenset()

    def test_every_state_in_table(self):
        assert set(TRANSITIONS) == set(SessionState)


class TestOpenIssue:
    """Tests for issue creation."""

    def test_creates_issue_and_enters_polling(self, session_config, tracker):
        session = ApprovalSession(session_config, tracker)

        issue = session.open_issue()

        assert issue.number == 1
        assert session.state is SessionState.POLLING
        assert tracker.created[0]["title"] == session_config.issue_title
        assert tracker.created[0]["body"] == session_config.issue_body

    def test_empty_labels_are_omitted(self, session_config, tracker):
        ApprovalSession(session_config, tracker).open_issue()
        assert tracker.created[0]["labels"] is None

    def test_labels_are_passed_in_order(self, session_config, tracker):
        config = dataclasses.replace(session_config, labels=("bug", "enhancement"))
        ApprovalSession(config, tracker).open_issue()
        assert tracker.created[0]["labels"] == ["bug", "enhancement"]

    def test_creation_failure_is_fatal(self, session_config, tracker):
        tracker.create_error = TrackerError(
            "bad credentials", error_type=TrackerErrorType.AUTH_REQUIRED
        )
        session = ApprovalSession(session_config, tracker)

        with pytest.raises(TrackerError):
            session.run()

        assert session.state is SessionState.CREATED
        assert session.issue is None
        assert tracker.list_calls == 0

    def test_cannot_open_twice(self, session_config, tracker):
        session = ApprovalSession(session_config, tracker)
        session.open_issue()
        with pytest.raises(InvalidTransitionError):
            session.open_issue()

    def test_creation_call_gets_a_timeout(self, session_config, tracker):
        session = ApprovalSession(session_config, tracker, call_timeout=7.0)
        session.open_issue()
        assert tracker.timeouts[0] == 7.0


class TestPolling:
    """Tests for the poll loop."""

    def test_poll_before_open_is_rejected(self, session_config, tracker):
        with pytest.raises(InvalidTransitionError):
            ApprovalSession(session_config, tracker).poll_once()

    def test_approved_when_all_approve(self, session_config, tracker):
        tracker.snapshots = [
            [],
            [Comment("alice", "approve")],
            [Comment("alice", "approve"), Comment("Bob", "LGTM!")],
        ]
        session = ApprovalSession(session_config, tracker)

        result = session.run()

        assert result.state is SessionState.APPROVED
        assert result.approved
        assert result.polls == 3
        assert result.outcome.status == "approved"
        assert result.outcome.approved_by == ["alice", "bob"]
        assert session.history == [
            SessionState.CREATED,
            SessionState.POLLING,
            SessionState.APPROVED,
        ]

    def test_denied_on_single_denial(self, session_config, tracker):
        tracker.snapshots = [[Comment("alice", "approve"), Comment("bob", "no")]]

        result = ApprovalSession(session_config, tracker).run()

        assert result.state is SessionState.DENIED
        assert result.outcome.denied_by == ["bob"]

    def test_quorum_below_all(self, session_config, tracker):
        config = dataclasses.replace(
            session_config, approvers=("x", "y", "z"), minimum_approvals=2
        )
        tracker.snapshots = [
            [Comment("x", "approve")],
            [Comment("x", "approve"), Comment("y", "approve")],
        ]
        session = ApprovalSession(config, tracker)

        result = session.run()

        assert result.state is SessionState.APPROVED
        assert result.polls == 2

    def test_custom_vocabulary(self, session_config, tracker):
        config = dataclasses.replace(
            session_config,
            approvers=("alice",),
            vocabulary=Vocabulary.with_custom_words(approval=[":shipit:"]),
        )
        tracker.snapshots = [[Comment("alice", ":shipit:")]]

        assert ApprovalSession(config, tracker).run().state is SessionState.APPROVED

    def test_registered_word_approves(self, session_config, tracker):
        get_registry().register_approval_word("shipit")
        config = dataclasses.replace(session_config, approvers=("alice",))
        tracker.snapshots = [[Comment("alice", "shipit")]]

        result = ApprovalSession(config, tracker).run()

        assert result.state is SessionState.APPROVED
        assert result.outcome.approved_by == ["alice"]

    def test_registered_word_merges_with_configured_words(self, session_config, tracker):
        get_registry().register_denial_word("naw")
        config = dataclasses.replace(
            session_config,
            vocabulary=Vocabulary.with_custom_words(approval=[":shipit:"]),
        )
        tracker.snapshots = [[Comment("alice", ":shipit:"), Comment("bob", "naw")]]

        assert ApprovalSession(config, tracker).run().state is SessionState.DENIED

    def test_registration_after_construction_not_applied(self, session_config, tracker):
        config = dataclasses.replace(
            session_config, approvers=("alice",), timeout_seconds=0.05
        )
        session = ApprovalSession(config, tracker)
        get_registry().register_approval_word("shipit")
        tracker.snapshots = [[Comment("alice", "shipit")]]

        assert session.run().state is SessionState.TIMED_OUT

    def test_registered_word_conflicting_with_config(self, session_config, tracker):
        get_registry().register_denial_word(":shipit:")
        config = dataclasses.replace(
            session_config,
            vocabulary=Vocabulary.with_custom_words(approval=[":shipit:"]),
        )
        with pytest.raises(ConfigurationError):
            ApprovalSession(config, tracker)

    def test_times_out_while_pending(self, session_config, tracker):
        config = dataclasses.replace(session_config, timeout_seconds=0.05)
        tracker.snapshots = [[Comment("alice", "approve")]]

        result = ApprovalSession(config, tracker).run()

        assert result.state is SessionState.TIMED_OUT
        assert result.outcome.status == "timed-out"
        assert tracker.list_calls >= 1

    def test_timeout_with_fake_clock(self, session_config, tracker):
        # Each clock read advances one second, timeout is ten seconds
        config = dataclasses.replace(session_config, timeout_seconds=10.0)
        clock = FakeClock(step=1.0)

        result = ApprovalSession(config, tracker, clock=clock).run()

        assert result.state is SessionState.TIMED_OUT
        assert result.polls < 10

    def test_approval_on_final_poll_wins_over_timeout(self, session_config, tracker):
        config = dataclasses.replace(
            session_config, approvers=("alice",), timeout_seconds=0.02,
            poll_interval_seconds=1.0,
        )
        tracker.snapshots = [[Comment("alice", "approve")]]

        result = ApprovalSession(config, tracker).run()

        assert result.state is SessionState.APPROVED

    def test_transient_errors_are_retried(self, session_config, tracker):
        tracker.snapshots = [
            TrackerError("HTTP 502", error_type=TrackerErrorType.SERVER_ERROR),
            TrackerError("timed out", error_type=TrackerErrorType.TIMEOUT),
            [Comment("alice", "yes"), Comment("bob", "yes")],
        ]

        result = ApprovalSession(session_config, tracker).run()

        assert result.state is SessionState.APPROVED
        assert len(result.poll_errors) == 2
        assert result.polls == 1

    def test_errors_until_deadline_time_out(self, session_config, tracker):
        config = dataclasses.replace(session_config, timeout_seconds=0.05)
        tracker.snapshots = [TrackerError("HTTP 503", error_type=TrackerErrorType.SERVER_ERROR)]

        result = ApprovalSession(config, tracker).run()

        assert result.state is SessionState.TIMED_OUT
        assert result.poll_errors

    def test_call_timeouts_never_exceed_cap(self, session_config, tracker):
        tracker.snapshots = [[Comment("alice", "ok"), Comment("bob", "ok")]]
        config = dataclasses.replace(session_config, timeout_seconds=0.05)

        ApprovalSession(config, tracker, call_timeout=3.0).run()

        assert all(t is not None and t <= 3.0 for t in tracker.timeouts)

    def test_same_snapshot_same_status(self, session_config, tracker):
        session = ApprovalSession(session_config, tracker)
        snapshot = [Comment("alice", "approve"), Comment("bob", "maybe")]
        assert session.evaluate_snapshot(snapshot) is ApprovalStatus.PENDING
        assert session.evaluate_snapshot(snapshot) is ApprovalStatus.PENDING


class TestCancellation:
    """Tests for cooperative cancellation."""

    def test_cancel_before_first_tick(self, session_config, tracker):
        session = ApprovalSession(session_config, tracker)
        session.cancel()

        result = session.run()

        assert result.state is SessionState.CANCELLED
        assert tracker.list_calls == 0
        assert result.outcome.status == "cancelled"
        assert tracker.closed == [1]

    def test_cancel_from_another_thread(self, session_config, tracker):
        config = dataclasses.replace(session_config, poll_interval_seconds=10.0)
        session = ApprovalSession(config, tracker)

        timer = threading.Timer(0.05, session.cancel)
        timer.start()
        started = time.monotonic()
        try:
            result = session.run()
        finally:
            timer.cancel()

        assert result.state is SessionState.CANCELLED
        assert time.monotonic() - started < 5.0

    def test_no_evaluation_after_cancel_observed(self, session_config, tracker):
        session = ApprovalSession(session_config, tracker)

        def cancel_then_return_nothing(*args, **kwargs):
            session.cancel()
            return []

        tracker.list_comments = cancel_then_return_nothing
        result = session.run()

        assert result.state is SessionState.CANCELLED

    @pytest.mark.parametrize("body", ["approve", "deny"])
    def test_in_flight_snapshot_discarded_after_cancel(self, session_config, tracker, body):
        session = ApprovalSession(session_config, tracker)

        def cancel_then_return_decisions(*args, **kwargs):
            session.cancel()
            return [Comment("alice", body), Comment("bob", body)]

        tracker.list_comments = cancel_then_return_decisions
        result = session.run()

        assert result.state is SessionState.CANCELLED
        assert result.outcome.approved_by == []
        assert result.outcome.denied_by == []
        assert result.polls == 1
        assert "Workflow cancelled" in tracker.posted[0]


class TestTerminalSideEffects:
    """Tests for reporter side effects."""

    def test_closing_comment_posted_once(self, session_config, tracker):
        tracker.snapshots = [[Comment("alice", "approve"), Comment("bob", "approve")]]
        session = ApprovalSession(session_config, tracker)

        first = session.run()
        second = session.run()

        assert first is second
        assert len(tracker.posted) == 1
        assert tracker.closed == [1]

    def test_no_side_effects_before_terminal(self, session_config, tracker):
        session = ApprovalSession(session_config, tracker)
        session.open_issue()
        session.poll_once()
        assert tracker.posted == []
        assert tracker.closed == []

    def test_close_failure_does_not_change_result(self, session_config, tracker):
        tracker.snapshots = [[Comment("alice", "deny")]]
        tracker.close_error = TrackerError("HTTP 502", error_type=TrackerErrorType.SERVER_ERROR)

        result = ApprovalSession(session_config, tracker).run()

        assert result.state is SessionState.DENIED
        assert "HTTP 502" in result.report_error

    def test_uses_given_reporter(self, session_config, tracker, tmp_path):
        output = tmp_path / "out.txt"
        reporter = ResultReporter(tracker, output_path=str(output))
        tracker.snapshots = [[Comment("alice", "approve"), Comment("bob", "approve")]]

        result = ApprovalSession(session_config, tracker, reporter=reporter).run()

        assert reporter.write_outputs(result.outcome) is True
        assert "approval-status=approved" in output.read_text()


class TestEventLogging:
    """Tests for session event logging."""

    def _events(self, event_logger: EventLogger) -> list[dict]:
        return [json.loads(line) for line in event_logger.path.read_text().splitlines()]

    def test_writes_jsonl_events(self, session_config, tracker, tmp_path):
        event_logger = EventLogger(42, tmp_path / "logs")
        tracker.snapshots = [[Comment("alice", "approve"), Comment("bob", "approve")]]

        ApprovalSession(session_config, tracker, event_logger=event_logger).run()

        events = self._events(event_logger)
        names = [e["event_type"] for e in events]
        assert names[0] == "session_start"
        assert "issue_created" in names
        assert names[-1] == "terminal"
        assert "issue_number" not in events[0]
        assert all(e["issue_number"] == 1 for e in events[1:])

    def test_terminal_event_carries_outcome(self, session_config, tracker, tmp_path):
        event_logger = EventLogger(42, tmp_path / "logs")
        tracker.snapshots = [[Comment("alice", "approve"), Comment("bob", "deny")]]

        ApprovalSession(session_config, tracker, event_logger=event_logger).run()

        terminal = self._events(event_logger)[-1]
        assert terminal["data"]["state"] == "DENIED"
        assert terminal["data"]["outcome"] == {
            "status": "denied",
            "issue_number": 1,
            "issue_url": "https://github.com/owner/repo/issues/1",
            "approved_by": ["alice"],
            "denied_by": ["bob"],
        }

    def test_poll_failures_logged(self, session_config, tracker, tmp_path):
        event_logger = EventLogger(42, tmp_path / "logs")
        tracker.snapshots = [
            TrackerError("HTTP 502", TrackerErrorType.SERVER_ERROR),
            [Comment("alice", "approve"), Comment("bob", "approve")],
        ]

        ApprovalSession(session_config, tracker, event_logger=event_logger).run()

        failed = [e for e in self._events(event_logger) if e["event_type"] == "poll_failed"]
        assert len(failed) == 1
        assert failed[0]["level"] == "warn"
        assert failed[0]["data"]["error_type"] == "SERVER_ERROR"


class TestWaiter:
    """Tests for the wait primitive."""

    def test_tick(self):
        waiter = Waiter()
        assert waiter.wait(0.01, time.monotonic() + 60) is Wake.TICK

    def test_deadline_already_passed(self):
        waiter = Waiter()
        assert waiter.wait(10, time.monotonic() - 1) is Wake.DEADLINE

    def test_deadline_before_tick(self):
        waiter = Waiter()
        assert waiter.wait(10, time.monotonic() + 0.01) is Wake.DEADLINE

    def test_cancelled(self):
        waiter = Waiter()
        waiter.cancel()
        assert waiter.cancelled
        assert waiter.wait(10, time.monotonic() + 60) is Wake.CANCELLED

    def test_cancel_wakes_blocked_wait(self):
        waiter = Waiter()
        threading.Timer(0.02, waiter.cancel).start()
        started = time.monotonic()
        assert waiter.wait(10, started + 60) is Wake.CANCELLED
        assert time.monotonic() - started < 5
