"""Policy Engine — evaluates compiled rules against a planned action.

Every rule whose target matches the action is evaluated, in compiled order:
  triggered WARN → verdict rises to WARN
  triggered DENY → verdict becomes DENY (terminal, never downgraded)
  not triggered  → recorded as evaluated only

No matching rule at all → ALLOW with an explicit "no applicable policy"
reason, so callers can tell "compliant" apart from "unregulated".

The active rule set lives behind a RuleSetHandle and is swapped atomically
by ``reload``; evaluations read whatever set was current when they started.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from govcore.errors import ConfigParseError, MergeConflict
from govcore.loader import PolicyLoader
from govcore.policy.compiler import RuleCompiler
from govcore.policy.rules import Decision, Effect, Rule, Verdict
from govcore.schema import validate_permissive, validate_strict
from govcore.settings import GovernanceSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompiledRuleSet:
    """Immutable snapshot of everything one reload produced."""

    rules: tuple[Rule, ...] = ()
    aliases: dict[str, str] = field(default_factory=dict)
    warnings: tuple[str, ...] = ()
    sources: tuple[Path, ...] = ()
    loaded_at: datetime | None = None


class RuleSetHandle:
    """Holder for the active rule set.

    Reads are lock-free (a single attribute load). Writers serialise on a
    lock so two concurrent reloads publish one after the other.
    """

    def __init__(self, initial: CompiledRuleSet | None = None) -> None:
        self._current = initial or CompiledRuleSet()
        self._lock = threading.Lock()

    def current(self) -> CompiledRuleSet:
        return self._current

    def publish(self, rule_set: CompiledRuleSet) -> CompiledRuleSet:
        """Swap in *rule_set*; returns the one it replaced."""
        with self._lock:
            previous, self._current = self._current, rule_set
        return previous


class DecisionEngine:
    """Fold matching rules into a single Decision."""

    def __init__(self, handle: RuleSetHandle) -> None:
        self._handle = handle

    def resolve_action(self, action: str, rule_set: CompiledRuleSet | None = None) -> str:
        rule_set = rule_set or self._handle.current()
        return rule_set.aliases.get(action, action)

    def evaluate(self, action: str, args: Any = None, context: dict | None = None) -> Decision:
        rule_set = self._handle.current()
        resolved = self.resolve_action(action, rule_set)
        context = context or {}
        decision = Decision()

        for rule in rule_set.rules:
            if not rule.target.matches(resolved):
                continue
            decision.evaluated_rule_ids.append(rule.id)
            try:
                messages = rule.violations(args, context)
            except Exception:
                # fail closed: a rule that cannot be evaluated blocks the action
                logger.exception("Rule %s failed to evaluate", rule.id)
                messages = ["rule could not be evaluated"]
                triggered_effect = Effect.DENY
            else:
                triggered_effect = rule.effect
            if not messages:
                continue

            decision.matched_rule_ids.append(rule.id)
            decision.reasons.append(f"{rule.id}: {'; '.join(messages)}")
            decision.suggestions.extend(s.rendered(context) for s in rule.suggestions)
            for control in rule.controls:
                if control not in decision.control_ids:
                    decision.control_ids.append(control)

            verdict = Verdict.DENY if triggered_effect is Effect.DENY else Verdict.WARN
            if verdict.rank > decision.verdict.rank:
                decision.verdict = verdict

        if not decision.evaluated_rule_ids:
            decision.reasons.append(f"no applicable policy for '{resolved}'")

        if decision.is_denied:
            logger.warning("Action %s denied: %s", resolved, decision.reasons)
        return decision


@dataclass
class ReloadResult:
    rule_count: int
    warnings: list[str]

    def to_dict(self) -> dict:
        return {"ruleCount": self.rule_count, "warnings": list(self.warnings)}


class PolicyEngine:
    """Facade: evaluate() against the active rule set, reload() to replace it."""

    def __init__(
        self,
        handle: RuleSetHandle | None = None,
        ato_profile: str = "",
        loader: PolicyLoader | None = None,
    ) -> None:
        self.handle = handle or RuleSetHandle()
        self.ato_profile = ato_profile
        self._loader = loader or PolicyLoader()
        self._decisions = DecisionEngine(self.handle)

    @classmethod
    def from_settings(cls, settings: GovernanceSettings | None = None) -> PolicyEngine:
        """Build an engine and load the configured rule directory."""
        settings = settings or GovernanceSettings()
        engine = cls(ato_profile=settings.ato_profile)
        engine.reload(settings.rule_paths)
        return engine

    def evaluate(self, action: str, args: Any = None, context: dict | None = None) -> Decision:
        return self._decisions.evaluate(action, args, context)

    def resolve_action(self, action: str) -> str:
        return self._decisions.resolve_action(action)

    def build(self, paths: Iterable[str | Path]) -> CompiledRuleSet:
        """Load → validate → compile without publishing anything."""
        try:
            loaded = self._loader.load(paths)
        except MergeConflict as e:
            raise ConfigParseError(str(e), errors=[str(e)]) from e

        warnings = list(loaded.warnings)
        warnings.extend(validate_strict(loaded.raw))
        document = validate_permissive(loaded.raw)

        compiler = RuleCompiler(ato_profile=self.ato_profile)
        rules = compiler.compile(document)
        warnings.extend(compiler.warnings)

        return CompiledRuleSet(
            rules=tuple(rules),
            aliases=dict(document.aliases),
            warnings=tuple(warnings),
            sources=tuple(loaded.sources),
            loaded_at=datetime.now(timezone.utc),
        )

    def reload(self, paths: Iterable[str | Path]) -> ReloadResult:
        """Rebuild the rule set and publish it; on error the old set stays."""
        try:
            rule_set = self.build(paths)
        except ConfigParseError as e:
            logger.error("Policy reload failed, keeping previous rule set: %s", e)
            raise
        self.handle.publish(rule_set)
        logger.info(
            "Published %d rules from %d source(s) with %d warning(s)",
            len(rule_set.rules), len(rule_set.sources), len(rule_set.warnings),
        )
        return ReloadResult(rule_count=len(rule_set.rules), warnings=list(rule_set.warnings))

    def describe(self) -> dict:
        current = self.handle.current()
        return {
            "ruleCount": len(current.rules),
            "sources": [str(p) for p in current.sources],
            "warnings": list(current.warnings),
            "loadedAt": current.loaded_at.isoformat() if current.loaded_at else None,
        }

    def dump_rules(self) -> list[dict]:
        return [rule.to_dict() for rule in self.handle.current().rules]
