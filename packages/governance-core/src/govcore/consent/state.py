"""Per-session consent state and the human-reply vocabulary."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class ConsentMode(Enum):
    """What the human decided for state-changing actions in this session."""

    UNDECIDED = "undecided"
    EXECUTE = "execute"
    SIMULATE = "simulate"
    DENY = "deny"


DECIDED_MODES = {ConsentMode.EXECUTE, ConsentMode.SIMULATE, ConsentMode.DENY}

REPLY_VOCABULARY: dict[ConsentMode, frozenset[str]] = {
    ConsentMode.EXECUTE: frozenset({"yes", "y", "execute", "approve"}),
    ConsentMode.SIMULATE: frozenset({"dry run", "dry-run", "dry", "simulate"}),
    ConsentMode.DENY: frozenset({"no", "n", "cancel", "deny"}),
}


def parse_consent_response(raw: str | None) -> ConsentMode | None:
    """Map one line of human input to a decision; None if unrecognised."""
    text = " ".join((raw or "").strip().lower().split())
    for mode, words in REPLY_VOCABULARY.items():
        if text in words:
            return mode
    return None


@dataclass(frozen=True)
class ConsentState:
    """Single value replacing independent consent flags.

    ``asked_once`` latches on the first human answer and is never cleared
    within a session; a new session starts from a fresh ConsentState.
    """

    mode: ConsentMode = ConsentMode.UNDECIDED
    asked_once: bool = False

    @property
    def decided(self) -> bool:
        return self.mode in DECIDED_MODES

    def record(self, mode: ConsentMode) -> ConsentState:
        """Return the state after a human answer, raising ValueError on illegal moves."""
        if mode not in DECIDED_MODES:
            raise ValueError(f"Cannot record consent mode {mode.value}")
        if self.asked_once:
            raise ValueError(
                f"Consent already recorded as {self.mode.value} for this session"
            )
        return replace(self, mode=mode, asked_once=True)
