"""
Error taxonomy for the approval gate.

This module provides:
- TrackerErrorType enum for categorizing issue tracker failures
- TrackerErrorClassifier for detecting error types from gh CLI output
- Exception classes for configuration, tracker, state machine and output errors
"""

from __future__ import annotations

import re
from enum import Enum, auto


class ApprovalGateError(Exception):
    """Base exception for all approval gate errors."""
    pass


class ConfigurationError(ApprovalGateError):
    """Raised when configuration is invalid or cannot be loaded."""
    pass


class InvalidTransitionError(ApprovalGateError):
    """Raised when the session state machine is asked for an illegal transition."""
    pass


class OutputSinkError(ApprovalGateError):
    """Raised when an output path is configured but cannot be written."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Cannot write outputs to {path}: {reason}")
        self.path = path
        self.reason = reason


class TrackerErrorType(Enum):
    """
    Classification of issue tracker failures.

    Used by the session to decide whether a failure can be retried on the
    next poll tick.
    """

    # Require user action
    AUTH_REQUIRED = auto()      # Missing or rejected token
    NOT_FOUND = auto()          # Repository, issue or team does not exist
    CLI_NOT_FOUND = auto()      # gh binary not installed

    # Usually recoverable
    RATE_LIMIT = auto()         # Primary or secondary rate limit
    SERVER_ERROR = auto()       # 5xx from the API
    TIMEOUT = auto()            # Call exceeded its deadline

    # Client errors
    INVALID_RESPONSE = auto()   # Output was not the JSON we expected

    UNKNOWN = auto()


RECOVERABLE_TYPES = (
    TrackerErrorType.RATE_LIMIT,
    TrackerErrorType.SERVER_ERROR,
    TrackerErrorType.TIMEOUT,
    TrackerErrorType.UNKNOWN,
)


class TrackerError(ApprovalGateError):
    """
    Raised when an issue tracker call fails.

    Includes error type classification for retry decisions.
    """

    def __init__(
        self,
        message: str,
        error_type: TrackerErrorType = TrackerErrorType.UNKNOWN,
        stderr: str = "",
        returncode: int = -1,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.stderr = stderr
        self.returncode = returncode

    @property
    def recoverable(self) -> bool:
        """Check if this error is worth retrying on the next tick."""
        return self.error_type in RECOVERABLE_TYPES

    @property
    def requires_user_action(self) -> bool:
        """Check if this error requires user intervention."""
        return self.error_type in (
            TrackerErrorType.AUTH_REQUIRED,
            TrackerErrorType.NOT_FOUND,
            TrackerErrorType.CLI_NOT_FOUND,
        )


class TrackerErrorClassifier:
    """
    Classifies errors from gh CLI output.

    Uses pattern matching on stderr/stdout to determine error type.
    """

    AUTH_PATTERNS = [
        r"bad\s+credentials",
        r"requires\s+authentication",
        r"gh\s+auth\s+login",
        r"http\s+401",
        r"resource\s+not\s+accessible\s+by\s+integration",
    ]

    RATE_LIMIT_PATTERNS = [
        r"rate.?limit",
        r"secondary\s+rate",
        r"http\s+429",
        r"abuse\s+detection",
    ]

    NOT_FOUND_PATTERNS = [
        r"http\s+404",
        r"not\s+found",
        r"could\s+not\s+resolve\s+to\s+a\s+repository",
    ]

    SERVER_PATTERNS = [
        r"http\s+5\d\d",
        r"server\s+error",
        r"bad\s+gateway",
        r"service\s+unavailable",
        r"connection\s+(reset|refused)",
    ]

    @classmethod
    def classify(
        cls,
        stderr: str,
        stdout: str = "",
        returncode: int = -1,
    ) -> TrackerErrorType:
        """
        Classify a gh CLI error based on output.

        Args:
            stderr: Standard error output from gh
            stdout: Standard output from gh
            returncode: Process return code

        Returns:
            TrackerErrorType classification
        """
        combined = f"{stderr} {stdout}".lower()

        # Rate limit responses are 403s, check before auth
        if cls._matches_any(combined, cls.RATE_LIMIT_PATTERNS):
            return TrackerErrorType.RATE_LIMIT

        if cls._matches_any(combined, cls.AUTH_PATTERNS):
            return TrackerErrorType.AUTH_REQUIRED

        if cls._matches_any(combined, cls.NOT_FOUND_PATTERNS):
            return TrackerErrorType.NOT_FOUND

        if cls._matches_any(combined, cls.SERVER_PATTERNS):
            return TrackerErrorType.SERVER_ERROR

        return TrackerErrorType.UNKNOWN

    @classmethod
    def _matches_any(cls, text: str, patterns: list[str]) -> bool:
        """Check if text matches any of the given patterns."""
        for pattern in patterns:
            if re.search(pattern, text, re.IGNORECASE):
                return True
        return False

    @classmethod
    def create_error(
        cls,
        message: str,
        stderr: str = "",
        stdout: str = "",
        returncode: int = -1,
    ) -> TrackerError:
        """
        Create a classified TrackerError from raw gh output.

        Args:
            message: Human-readable error message
            stderr: Raw stderr output
            stdout: Raw stdout output
            returncode: Process return code

        Returns:
            TrackerError carrying the classified type
        """
        error_type = cls.classify(stderr, stdout, returncode)
        detail = stderr.strip()[:200]
        if detail:
            message = f"{message}: {detail}"
        return TrackerError(
            message,
            error_type=error_type,
            stderr=stderr,
            returncode=returncode,
        )


def get_user_action_message(error: TrackerError) -> str:
    """
    Generate a user-friendly message explaining how to fix the error.

    Args:
        error: The tracker error that occurred

    Returns:
        Human-readable instructions for the user
    """
    if error.error_type == TrackerErrorType.AUTH_REQUIRED:
        return (
            "GitHub rejected the token.\n"
            "Pass a token with `issues: write` permission via the `secret` input "
            "or the GITHUB_TOKEN environment variable."
        )

    if error.error_type == TrackerErrorType.CLI_NOT_FOUND:
        return "The gh CLI was not found. Install it from https://cli.github.com/."

    if error.error_type == TrackerErrorType.NOT_FOUND:
        return (
            "GitHub could not find the repository, issue or team.\n"
            "Check the target repository inputs and any org/team approvers."
        )

    if error.error_type == TrackerErrorType.RATE_LIMIT:
        return "GitHub rate limit reached. Increase the polling interval."

    return f"Issue tracker error: {error}"
