"""Consent gate — holds state-changing actions until a human authorises them.

Flow for one state-changing action:

1. evaluate the action; a policy DENY always blocks (and records nothing);
2. if the session is undecided, ask the human once (yes / dry run / no);
3. replay the recorded mode: execute, simulate, or block.

Read-only actions skip the prompt and always execute. The decision is still
computed so the audit log shows what policy said about them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable

from govcore.consent.audit import GateAuditEntry, GateAuditLog
from govcore.consent.state import ConsentMode, ConsentState, parse_consent_response
from govcore.policy.engine import PolicyEngine
from govcore.policy.rules import Decision, Verdict, namespace_of
from govcore.settings import GovernanceSettings
from govcore.wrappers import render_decision

logger = logging.getLogger(__name__)

DEFAULT_STATE_CHANGING_PREFIXES = ("azure", "github", "teams")


class GateStatus(Enum):
    EXECUTED = "executed"
    SIMULATED = "simulated"
    BLOCKED = "blocked"


class BlockReason(Enum):
    POLICY_DENY = "policy_deny"
    CONSENT_REQUIRED = "consent_required"
    CONSENT_DECLINED = "consent_declined"


@dataclass
class ConsentPrompt:
    """The pending plan shown to the human."""

    action: str
    arguments: Any
    decision: Decision
    attempt: int = 1

    @property
    def text(self) -> str:
        lines = [f"About to run `{self.action}` with:"]
        try:
            lines.append(json.dumps(self.arguments, indent=2, sort_keys=True, default=str))
        except (TypeError, ValueError):
            lines.append(str(self.arguments))
        if self.decision.verdict == Verdict.WARN:
            lines.append("")
            lines.append(render_decision(self.decision, title="Governance warnings"))
        lines.append("")
        lines.append("Reply `yes` to execute, `dry run` to simulate, or `no` to cancel.")
        return "\n".join(lines)


@dataclass
class GateResult:
    status: GateStatus
    decision: Decision
    result: Any = None
    reasons: list[str] = field(default_factory=list)
    block_reason: BlockReason | None = None
    prompt: ConsentPrompt | None = None
    error: str = ""

    @property
    def executed(self) -> bool:
        return self.status == GateStatus.EXECUTED

    def to_dict(self) -> dict:
        out: dict[str, Any] = {
            "status": self.status.value,
            "decision": self.decision.to_dict(),
        }
        if self.result is not None:
            out["result"] = self.result
        if self.reasons:
            out["reasons"] = list(self.reasons)
        if self.block_reason is not None:
            out["blockReason"] = self.block_reason.value
        if self.error:
            out["error"] = self.error
        return out


Executor = Callable[[str, Any], Awaitable[Any]]
Prompter = Callable[[ConsentPrompt], Awaitable[str]]


class ConsentGate:
    """One gate per conversation session; never share across sessions."""

    def __init__(
        self,
        engine: PolicyEngine,
        executor: Executor,
        prompter: Prompter | None = None,
        state_changing_prefixes: Iterable[str] = DEFAULT_STATE_CHANGING_PREFIXES,
        safe_actions: Iterable[str] = (),
        timeout_seconds: float | None = None,
        max_prompts: int = 3,
        audit_log: GateAuditLog | None = None,
    ) -> None:
        self._engine = engine
        self._executor = executor
        self._prompter = prompter
        self._prefixes = frozenset(state_changing_prefixes)
        self._safe_actions = frozenset(safe_actions)
        self._timeout = timeout_seconds
        self._max_prompts = max(1, max_prompts)
        self._state = ConsentState()
        self._prompt_lock = asyncio.Lock()
        self.audit_log = audit_log or GateAuditLog()

    @classmethod
    def from_settings(
        cls,
        engine: PolicyEngine,
        executor: Executor,
        prompter: Prompter | None = None,
        settings: GovernanceSettings | None = None,
        audit_log: GateAuditLog | None = None,
    ) -> ConsentGate:
        settings = settings or GovernanceSettings()
        return cls(
            engine,
            executor,
            prompter=prompter,
            state_changing_prefixes=settings.prefixes,
            safe_actions=settings.safe_action_names,
            timeout_seconds=settings.consent_timeout_seconds,
            max_prompts=settings.max_consent_prompts,
            audit_log=audit_log,
        )

    @property
    def state(self) -> ConsentState:
        return self._state

    def is_state_changing(self, action: str) -> bool:
        resolved = self._engine.resolve_action(action)
        if action in self._safe_actions or resolved in self._safe_actions:
            return False
        return namespace_of(action) in self._prefixes or namespace_of(resolved) in self._prefixes

    # ── human input ─────────────────────────────────────────────────────

    def record_human_response(self, raw: str) -> ConsentMode | None:
        """Apply one line of human input; returns the mode it recorded, if any."""
        mode = parse_consent_response(raw)
        if mode is None:
            logger.info("Ignoring unrecognised consent reply %r", raw)
            return None
        if self._state.asked_once:
            logger.info(
                "Consent already %s for this session; ignoring %r",
                self._state.mode.value, raw,
            )
            return None
        return self._record(mode)

    def cancel(self) -> ConsentState:
        """Cancelling the pending plan counts as a human 'no'."""
        if not self._state.asked_once:
            self._record(ConsentMode.DENY)
        return self._state

    def _record(self, mode: ConsentMode) -> ConsentMode:
        self._state = self._state.record(mode)
        logger.info("Consent recorded: %s", mode.value)
        return mode

    async def _read_reply(self, prompt: ConsentPrompt) -> str:
        if self._prompter is None:
            raise RuntimeError("consent gate has no prompter to ask")
        if self._timeout is None:
            return await self._prompter(prompt)
        return await asyncio.wait_for(self._prompter(prompt), timeout=self._timeout)

    async def _ask(self, action: str, args: Any, decision: Decision) -> None:
        async with self._prompt_lock:
            # another call may have obtained an answer while we waited
            if self._state.asked_once:
                return
            for attempt in range(1, self._max_prompts + 1):
                prompt = ConsentPrompt(action, args, decision, attempt=attempt)
                try:
                    raw = await self._read_reply(prompt)
                except asyncio.TimeoutError:
                    logger.warning(
                        "No consent reply for %s within %ss; treating as 'no'",
                        action, self._timeout,
                    )
                    self._record(ConsentMode.DENY)
                    return
                except asyncio.CancelledError:
                    self._record(ConsentMode.DENY)
                    raise
                if self.record_human_response(raw) is not None:
                    return
                logger.info(
                    "Unrecognised consent reply (%d/%d) for %s",
                    attempt, self._max_prompts, action,
                )
            logger.warning("No usable consent reply for %s; treating as 'no'", action)
            self._record(ConsentMode.DENY)

    # ── gate ────────────────────────────────────────────────────────────

    async def gate(self, action: str, args: Any = None, context: dict | None = None) -> GateResult:
        decision = self._engine.evaluate(action, args, context)

        if not self.is_state_changing(action):
            return await self._execute(action, args, decision)

        if decision.is_denied:
            return self._blocked(action, decision, BlockReason.POLICY_DENY, [])

        if not self._state.asked_once:
            if self._prompter is None:
                prompt = ConsentPrompt(action, args, decision)
                return self._blocked(
                    action, decision, BlockReason.CONSENT_REQUIRED,
                    [f"consent required before running '{action}': "
                     "reply yes, dry run or no"],
                    prompt=prompt,
                )
            await self._ask(action, args, decision)

        mode = self._state.mode
        if mode == ConsentMode.EXECUTE:
            return await self._execute(action, args, decision)
        if mode == ConsentMode.SIMULATE:
            return self._simulate(action, args, decision)
        return self._blocked(
            action, decision, BlockReason.CONSENT_DECLINED,
            ["consent declined: state-changing actions are blocked for this session"],
        )

    async def _execute(self, action: str, args: Any, decision: Decision) -> GateResult:
        try:
            output = await self._executor(action, args)
        except Exception as e:
            logger.exception("Executor failed for %s", action)
            result = GateResult(
                status=GateStatus.EXECUTED,
                decision=decision,
                reasons=list(decision.reasons) if decision.matched_rule_ids else [],
                error=str(e),
            )
        else:
            result = GateResult(
                status=GateStatus.EXECUTED,
                decision=decision,
                result=output,
                reasons=list(decision.reasons) if decision.matched_rule_ids else [],
            )
        self._log_audit(action, result)
        return result

    def _simulate(self, action: str, args: Any, decision: Decision) -> GateResult:
        result = GateResult(
            status=GateStatus.SIMULATED,
            decision=decision,
            result={"simulated": True, "action": action, "arguments": args},
            reasons=list(decision.reasons) if decision.matched_rule_ids else [],
        )
        self._log_audit(action, result)
        return result

    def _blocked(
        self,
        action: str,
        decision: Decision,
        block_reason: BlockReason,
        extra_reasons: list[str],
        prompt: ConsentPrompt | None = None,
    ) -> GateResult:
        reasons = extra_reasons + (list(decision.reasons) if decision.matched_rule_ids else [])
        result = GateResult(
            status=GateStatus.BLOCKED,
            decision=decision,
            reasons=reasons,
            block_reason=block_reason,
            prompt=prompt,
        )
        logger.warning("Blocked %s (%s)", action, block_reason.value)
        self._log_audit(action, result)
        return result

    def _log_audit(self, action: str, result: GateResult) -> None:
        self.audit_log.log(GateAuditEntry(
            action=action,
            status=result.status.value,
            verdict=result.decision.verdict.value,
            consent_mode=self._state.mode.value,
            policy_ids=list(result.decision.matched_rule_ids),
            block_reason=result.block_reason.value if result.block_reason else "",
            error=result.error,
        ))
