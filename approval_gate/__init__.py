"""
Approval Gate - manual approval step for automated workflows.

Opens a GitHub tracking issue, waits for designated approvers to comment a
recognized keyword, and resolves to approved, denied, timed out or cancelled.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
