"""Policy — rule compilation and decision evaluation."""

from govcore.policy.checks import Check, CheckKind, run_check
from govcore.policy.compiler import RuleCompiler, compile_rules
from govcore.policy.engine import (
    CompiledRuleSet,
    DecisionEngine,
    PolicyEngine,
    ReloadResult,
    RuleSetHandle,
)
from govcore.policy.rules import Decision, Effect, Rule, RuleTarget, Suggestion, Verdict

__all__ = [
    "Check",
    "CheckKind",
    "CompiledRuleSet",
    "Decision",
    "DecisionEngine",
    "Effect",
    "PolicyEngine",
    "ReloadResult",
    "Rule",
    "RuleCompiler",
    "RuleSetHandle",
    "RuleTarget",
    "Suggestion",
    "Verdict",
    "compile_rules",
    "run_check",
]
