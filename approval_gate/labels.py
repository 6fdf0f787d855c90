"""Parsing of comma-separated list inputs."""

from __future__ import annotations


def parse_csv(raw: str) -> list[str]:
    """
    Split a comma-separated string into trimmed, non-empty entries.

    Order is preserved. Empty input yields an empty list.
    """
    if not raw or not raw.strip():
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def parse_labels(raw: str) -> list[str]:
    """
    Parse the labels input.

    >>> parse_labels("  bug  ,  enhancement  ,  help wanted  ")
    ['bug', 'enhancement', 'help wanted']
    >>> parse_labels("bug,,enhancement")
    ['bug', 'enhancement']
    """
    return parse_csv(raw)
