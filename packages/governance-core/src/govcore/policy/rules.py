"""Compiled policy rules and the decisions they produce.

A Rule is immutable once compiled. Evaluating a rule never has side effects;
the engine folds rule outcomes into a single Decision.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from govcore.policy.checks import Check, run_check


class Effect(Enum):
    DENY = "deny"
    WARN = "warn"


class Verdict(Enum):
    ALLOW = "allow"
    WARN = "warn"
    DENY = "deny"

    @property
    def rank(self) -> int:
        return _VERDICT_RANK[self]


_VERDICT_RANK = {Verdict.ALLOW: 0, Verdict.WARN: 1, Verdict.DENY: 2}

NAMESPACE_SEPARATOR = "."

_PLACEHOLDER = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")


def namespace_of(action_name: str) -> str:
    return action_name.split(NAMESPACE_SEPARATOR, 1)[0]


def render(template: str, context: dict[str, Any]) -> str:
    """Fill ``{{ key }}`` placeholders from *context*; missing keys render empty."""
    return _PLACEHOLDER.sub(
        lambda m: "" if context.get(m.group(1)) is None else str(context[m.group(1)]),
        template,
    )


def _render_value(value: Any, context: dict[str, Any]) -> Any:
    if isinstance(value, str):
        return render(value, context)
    if isinstance(value, dict):
        return {k: _render_value(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [_render_value(v, context) for v in value]
    return value


@dataclass(frozen=True)
class RuleTarget:
    """Exactly one of action_name / namespace_prefix is set."""

    action_name: str | None = None
    namespace_prefix: str | None = None

    def __post_init__(self) -> None:
        if (self.action_name is None) == (self.namespace_prefix is None):
            raise ValueError(
                "RuleTarget needs exactly one of action_name or namespace_prefix"
            )

    def matches(self, action_name: str) -> bool:
        if self.action_name is not None:
            return self.action_name == action_name
        return self.namespace_prefix == namespace_of(action_name)

    def to_dict(self) -> dict:
        if self.action_name is not None:
            return {"tool": self.action_name}
        return {"prefix": self.namespace_prefix}


@dataclass(frozen=True)
class Suggestion:
    text: str
    title: str | None = None
    proposed_fix: dict[str, Any] | None = None

    def rendered(self, context: dict[str, Any]) -> Suggestion:
        return Suggestion(
            text=render(self.text, context),
            title=self.title,
            proposed_fix=_render_value(self.proposed_fix, context),
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"text": self.text}
        if self.title:
            out["title"] = self.title
        if self.proposed_fix is not None:
            out["proposedFix"] = self.proposed_fix
        return out


@dataclass(frozen=True)
class Rule:
    """One compiled, independently evaluable policy unit.

    A rule without checks is an unconditional advisory: it triggers on every
    matching action and its description is the reason.
    """

    id: str
    description: str
    target: RuleTarget
    effect: Effect
    checks: tuple[Check, ...] = ()
    suggestions: tuple[Suggestion, ...] = ()
    controls: tuple[str, ...] = ()

    @property
    def unconditional(self) -> bool:
        return not self.checks

    def violations(self, args: Any, context: dict[str, Any] | None = None) -> list[str]:
        """All failing check messages; empty when the rule is satisfied."""
        if self.unconditional:
            return [render(self.description or self.id, context or {})]
        messages = []
        for check in self.checks:
            message = run_check(args, check)
            if message is not None:
                messages.append(message)
        return messages

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "target": self.target.to_dict(),
            "effect": self.effect.value,
            "checks": [c.to_dict() for c in self.checks],
            "suggestions": [s.to_dict() for s in self.suggestions],
            "controls": list(self.controls),
        }


@dataclass
class Decision:
    verdict: Verdict = Verdict.ALLOW
    reasons: list[str] = field(default_factory=list)
    matched_rule_ids: list[str] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)
    control_ids: list[str] = field(default_factory=list)
    evaluated_rule_ids: list[str] = field(default_factory=list)

    @property
    def is_allowed(self) -> bool:
        return self.verdict == Verdict.ALLOW

    @property
    def is_denied(self) -> bool:
        return self.verdict == Verdict.DENY

    @property
    def policy_found(self) -> bool:
        return bool(self.evaluated_rule_ids)

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "decision": self.verdict.value,
            "reasons": list(self.reasons),
            "policyIds": list(self.matched_rule_ids),
        }
        if self.suggestions:
            out["suggestions"] = [s.to_dict() for s in self.suggestions]
        if self.control_ids:
            out["controls"] = list(self.control_ids)
        return out
