"""Errors raised while loading and compiling governance rule documents.

Only configuration problems are exceptions. Policy verdicts and consent
outcomes are ordinary return values (see ``Decision`` and ``GateResult``).
"""

from __future__ import annotations


class GovernanceError(Exception):
    """Base class for all governance-core errors."""


class ConfigNotFound(GovernanceError):
    """A declared rule-document path does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Policy source not found: {path}")
        self.path = path


class MergeConflict(GovernanceError):
    """A later document tried to merge a sequence onto a non-sequence value."""

    def __init__(self, key_path: str, existing_type: str) -> None:
        super().__init__(
            f"Cannot merge a list into {existing_type} at '{key_path}'"
        )
        self.key_path = key_path
        self.existing_type = existing_type


class ConfigParseError(GovernanceError):
    """Rule document content is malformed under the permissive schema."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []
