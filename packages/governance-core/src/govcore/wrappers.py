"""Policy preflight for tool handlers, plus markdown rendering of decisions."""

from __future__ import annotations

import functools
from typing import Any, Awaitable, Callable

from govcore.policy.engine import PolicyEngine
from govcore.policy.rules import Decision, Verdict

ToolHandler = Callable[[Any], Awaitable[Any]]


def render_decision(decision: Decision, title: str = "Governance") -> str:
    """Human-readable markdown: header, reasons, suggestions, controls."""
    lines = [f"### {title} ({decision.verdict.value})"]
    for reason in decision.reasons:
        lines.append(f"- {reason}")
    if decision.suggestions:
        lines.append("")
        lines.append("**Suggestions**")
        for s in decision.suggestions:
            lines.append(f"- {s.title}: {s.text}" if s.title else f"- {s.text}")
    if decision.control_ids:
        lines.append("")
        lines.append(f"**Controls**: {', '.join(decision.control_ids)}")
    return "\n".join(lines)


def govern(
    action: str, handler: ToolHandler, engine: PolicyEngine
) -> Callable[..., Awaitable[Any]]:
    """Wrap *handler* so every call is evaluated against *engine* first.

    allow → call through unchanged
    warn  → call through, attach the decision and an advisory text
    deny  → do not call; return an error payload carrying the decision
    """

    @functools.wraps(handler)
    async def governed(args: Any = None, context: dict | None = None) -> Any:
        decision = engine.evaluate(action, args, context)

        if decision.verdict == Verdict.DENY:
            return {
                "status": "deny",
                "governance": decision.to_dict(),
                "text": render_decision(decision, title="Blocked by governance policy"),
                "is_error": True,
            }

        output = await handler(args)
        if decision.verdict == Verdict.ALLOW:
            return output

        payload = dict(output) if isinstance(output, dict) else {"result": output}
        payload["governance"] = decision.to_dict()
        payload["advisory"] = render_decision(decision, title="Governance warnings")
        return payload

    return governed
