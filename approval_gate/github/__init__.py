"""
GitHub integration for the approval gate.

Provides the IssueTracker protocol and its gh CLI implementation.
"""

from approval_gate.github.tracker import GhIssueTracker, IssueTracker

__all__ = ["GhIssueTracker", "IssueTracker"]
