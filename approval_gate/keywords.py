"""
Keyword matching for approval comments.

A comment only counts when its whole body is a recognized word, so
discussion like "should i approve this" never triggers a decision.

Built-in words match case-insensitively. Custom words (emoji, hashtags,
`:shipit:` style shortcodes) match exactly as registered.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Iterable, Optional

from approval_gate.errors import ConfigurationError
from approval_gate.models import Decision

DEFAULT_APPROVAL_WORDS = ("approve", "approved", "lgtm", "yes")
DEFAULT_DENIAL_WORDS = ("deny", "denied", "no")

# Stripped from the end of a body after whitespace; "?" is deliberately absent
TRAILING_PUNCTUATION = "!."


def normalize_body(body: str) -> str:
    """
    Strip surrounding whitespace and a trailing run of `!` / `.`.

    >>> normalize_body("Approved!!\\n")
    'Approved'
    >>> normalize_body("Approved?")
    'Approved?'
    """
    return body.strip().rstrip(TRAILING_PUNCTUATION)


@dataclass(frozen=True)
class Vocabulary:
    """
    Immutable snapshot of the approval and denial words.

    Attributes:
        approval_words: Built-in approval words, compared case-folded.
        denial_words: Built-in denial words, compared case-folded.
        custom_approval_words: Extra approval words, compared exactly.
        custom_denial_words: Extra denial words, compared exactly.
    """
    approval_words: frozenset[str] = frozenset(DEFAULT_APPROVAL_WORDS)
    denial_words: frozenset[str] = frozenset(DEFAULT_DENIAL_WORDS)
    custom_approval_words: frozenset[str] = frozenset()
    custom_denial_words: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        # Stored case-folded so lookups only fold the body
        object.__setattr__(
            self, "approval_words", frozenset(w.casefold() for w in self.approval_words)
        )
        object.__setattr__(
            self, "denial_words", frozenset(w.casefold() for w in self.denial_words)
        )

        # A word that normalization would change can never equal a comment body
        for word in self.custom_approval_words | self.custom_denial_words:
            if not word or word != normalize_body(word):
                raise ConfigurationError(
                    f"Invalid custom word: {word!r} (no surrounding spaces "
                    f"or trailing '{TRAILING_PUNCTUATION}')"
                )

        overlap = (
            (self.approval_words & self.denial_words)
            | (self.custom_approval_words & self.custom_denial_words)
            | {w for w in self.custom_approval_words if w.casefold() in self.denial_words}
            | {w for w in self.custom_denial_words if w.casefold() in self.approval_words}
        )
        if overlap:
            raise ConfigurationError(
                f"Words cannot both approve and deny: {', '.join(sorted(overlap))}"
            )

    @classmethod
    def with_custom_words(
        cls,
        approval: Iterable[str] = (),
        denial: Iterable[str] = (),
    ) -> Vocabulary:
        """Default vocabulary extended with custom words."""
        return cls(
            custom_approval_words=frozenset(approval),
            custom_denial_words=frozenset(denial),
        )

    def merge(self, other: Vocabulary) -> Vocabulary:
        """
        Union of two vocabularies.

        Raises:
            ConfigurationError: If the combined word lists conflict.
        """
        return Vocabulary(
            approval_words=self.approval_words | other.approval_words,
            denial_words=self.denial_words | other.denial_words,
            custom_approval_words=self.custom_approval_words | other.custom_approval_words,
            custom_denial_words=self.custom_denial_words | other.custom_denial_words,
        )

    def display_approval_words(self) -> list[str]:
        """Approval words in a stable order for issue text."""
        builtin = [w for w in DEFAULT_APPROVAL_WORDS if w in self.approval_words]
        extra = sorted(self.approval_words - set(builtin))
        return builtin + extra + sorted(self.custom_approval_words)

    def display_denial_words(self) -> list[str]:
        """Denial words in a stable order for issue text."""
        builtin = [w for w in DEFAULT_DENIAL_WORDS if w in self.denial_words]
        extra = sorted(self.denial_words - set(builtin))
        return builtin + extra + sorted(self.custom_denial_words)


class KeywordMatcher:
    """
    Classifies comment bodies against a fixed vocabulary.

    The vocabulary is captured at construction and never changes, so a
    matcher can be shared freely between threads.
    """

    def __init__(self, vocabulary: Optional[Vocabulary] = None) -> None:
        self.vocabulary = vocabulary or Vocabulary()

    def classify(self, body: str) -> Decision:
        """
        Classify a comment body.

        Args:
            body: Raw comment text.

        Returns:
            Decision.APPROVE, Decision.DENY or Decision.NEUTRAL. Never raises
            for unrecognized text.
        """
        if self.is_approval(body):
            return Decision.APPROVE
        if self.is_denial(body):
            return Decision.DENY
        return Decision.NEUTRAL

    def is_approval(self, body: str) -> bool:
        text = normalize_body(body)
        vocab = self.vocabulary
        return text.casefold() in vocab.approval_words or text in vocab.custom_approval_words

    def is_denial(self, body: str) -> bool:
        text = normalize_body(body)
        vocab = self.vocabulary
        return text.casefold() in vocab.denial_words or text in vocab.custom_denial_words


@dataclass
class VocabularyRegistry:
    """
    Process-wide registry of custom approval and denial words.

    Registration is a configuration-time activity. Sessions take a
    snapshot() once and classify against that, so registration never
    interleaves with an in-progress poll.
    """
    _approval: list[str] = field(default_factory=list)
    _denial: list[str] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def register_approval_word(self, word: str) -> None:
        with self._lock:
            if word not in self._approval:
                self._approval.append(word)

    def deregister_approval_word(self, word: str) -> None:
        with self._lock:
            if word in self._approval:
                self._approval.remove(word)

    def register_denial_word(self, word: str) -> None:
        with self._lock:
            if word not in self._denial:
                self._denial.append(word)

    def deregister_denial_word(self, word: str) -> None:
        with self._lock:
            if word in self._denial:
                self._denial.remove(word)

    def snapshot(self) -> Vocabulary:
        """Build an immutable Vocabulary from the current registrations."""
        with self._lock:
            return Vocabulary.with_custom_words(list(self._approval), list(self._denial))

    def clear(self) -> None:
        with self._lock:
            self._approval.clear()
            self._denial.clear()


# Module-level registry
_registry: Optional[VocabularyRegistry] = None


def get_registry() -> VocabularyRegistry:
    """Get or create the process-wide vocabulary registry."""
    global _registry
    if _registry is None:
        _registry = VocabularyRegistry()
    return _registry


def clear_registry() -> None:
    """Drop all custom words. Useful for testing."""
    global _registry
    _registry = None
