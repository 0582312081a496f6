"""Tests for the Consent Gate — prompt once, replay the recorded mode."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
import yaml

from govcore.consent.audit import GateAuditLog
from govcore.consent.gate import BlockReason, ConsentGate, ConsentPrompt, GateStatus
from govcore.consent.state import ConsentMode
from govcore.policy.engine import PolicyEngine
from govcore.policy.rules import Verdict
from govcore.settings import GovernanceSettings

RG = "azure.create_resource_group"
GOOD = {"name": "rg-app", "location": "eastus"}
BANNED = {"name": "bad-rg", "location": "eastus"}


@pytest.fixture()
def engine(tmp_path) -> PolicyEngine:
    (tmp_path / "00.yaml").write_text(yaml.safe_dump({
        "aliases": {"platform.create_resource_group": RG},
        "azure": {
            "create_resource_group": {"deny_names": ["bad"]},
            "create_storage_account": {"suggest_region": "eastus"},
        },
    }))
    engine = PolicyEngine()
    engine.reload([tmp_path])
    return engine


@pytest.fixture()
def executor() -> AsyncMock:
    return AsyncMock(return_value={"id": "rg-1"})


def make_gate(engine, executor, replies=None, **kwargs) -> tuple[ConsentGate, AsyncMock | None]:
    prompter = None
    if replies is not None:
        prompter = AsyncMock(side_effect=list(replies))
    return ConsentGate(engine, executor, prompter=prompter, **kwargs), prompter


class TestClassification:
    def test_namespace_prefixes(self, engine, executor):
        gate, _ = make_gate(engine, executor)
        assert gate.is_state_changing(RG)
        assert gate.is_state_changing("github.create_repository")
        assert not gate.is_state_changing("docs.search")

    def test_alias_of_state_changing_action(self, engine, executor):
        gate, _ = make_gate(engine, executor)
        assert gate.is_state_changing("platform.create_resource_group")

    def test_safe_actions_bypass(self, engine, executor):
        gate, _ = make_gate(engine, executor, safe_actions=["azure.list_resource_groups"])
        assert not gate.is_state_changing("azure.list_resource_groups")


class TestReadOnlyActions:
    @pytest.mark.asyncio
    async def test_execute_without_prompt(self, engine, executor):
        gate, prompter = make_gate(engine, executor, replies=[])
        result = await gate.gate("docs.search", {"q": "vnet"})
        assert result.status == GateStatus.EXECUTED
        assert result.result == {"id": "rg-1"}
        executor.assert_awaited_once_with("docs.search", {"q": "vnet"})
        prompter.assert_not_awaited()
        assert gate.state.asked_once is False


class TestConsentLatch:
    @pytest.mark.asyncio
    async def test_yes_executes_and_is_not_asked_again(self, engine, executor):
        gate, prompter = make_gate(engine, executor, replies=["yes"])
        first = await gate.gate(RG, GOOD)
        second = await gate.gate("azure.create_storage_account", {"name": "st1"})
        assert first.status == GateStatus.EXECUTED
        assert second.status == GateStatus.EXECUTED
        assert prompter.await_count == 1
        assert executor.await_count == 2
        assert gate.state.mode == ConsentMode.EXECUTE

    @pytest.mark.asyncio
    async def test_prompt_describes_plan(self, engine, executor):
        gate, prompter = make_gate(engine, executor, replies=["yes"])
        await gate.gate("azure.create_storage_account", {"name": "st1"})
        (prompt,), _ = prompter.await_args
        assert isinstance(prompt, ConsentPrompt)
        assert prompt.action == "azure.create_storage_account"
        assert prompt.decision.verdict == Verdict.WARN
        assert "dry run" in prompt.text
        assert "Governance warnings" in prompt.text

    @pytest.mark.asyncio
    async def test_dry_run_never_calls_executor(self, engine, executor):
        gate, prompter = make_gate(engine, executor, replies=["dry run"])
        first = await gate.gate(RG, GOOD)
        second = await gate.gate(RG, {"name": "rg-two"})
        assert first.status == GateStatus.SIMULATED
        assert second.status == GateStatus.SIMULATED
        assert second.result == {"simulated": True, "action": RG, "arguments": {"name": "rg-two"}}
        executor.assert_not_awaited()
        assert prompter.await_count == 1

    @pytest.mark.asyncio
    async def test_no_blocks_the_session(self, engine, executor):
        gate, prompter = make_gate(engine, executor, replies=["no"])
        first = await gate.gate(RG, GOOD)
        second = await gate.gate(RG, GOOD)
        for result in (first, second):
            assert result.status == GateStatus.BLOCKED
            assert result.block_reason == BlockReason.CONSENT_DECLINED
            assert result.reasons
        executor.assert_not_awaited()
        assert prompter.await_count == 1

    @pytest.mark.asyncio
    async def test_read_only_still_runs_after_no(self, engine, executor):
        gate, _ = make_gate(engine, executor, replies=["no"])
        await gate.gate(RG, GOOD)
        result = await gate.gate("docs.search", {})
        assert result.status == GateStatus.EXECUTED


class TestPolicyDeny:
    @pytest.mark.asyncio
    async def test_deny_before_consent_does_not_prompt_or_latch(self, engine, executor):
        gate, prompter = make_gate(engine, executor, replies=["yes"])
        result = await gate.gate(RG, BANNED)
        assert result.status == GateStatus.BLOCKED
        assert result.block_reason == BlockReason.POLICY_DENY
        assert result.decision.is_denied
        assert any("bad" in r for r in result.reasons)
        prompter.assert_not_awaited()
        assert gate.state.asked_once is False

    @pytest.mark.asyncio
    async def test_deny_overrides_execute_mode(self, engine, executor):
        gate, _ = make_gate(engine, executor, replies=["yes"])
        await gate.gate(RG, GOOD)
        result = await gate.gate(RG, BANNED)
        assert result.status == GateStatus.BLOCKED
        assert result.block_reason == BlockReason.POLICY_DENY
        assert executor.await_count == 1

    @pytest.mark.asyncio
    async def test_deny_through_alias(self, engine, executor):
        gate, _ = make_gate(engine, executor, replies=["yes"])
        result = await gate.gate("platform.create_resource_group", BANNED)
        assert result.block_reason == BlockReason.POLICY_DENY


class TestWithoutPrompter:
    @pytest.mark.asyncio
    async def test_consent_required_then_resubmit(self, engine, executor):
        gate, _ = make_gate(engine, executor)
        blocked = await gate.gate(RG, GOOD)
        assert blocked.status == GateStatus.BLOCKED
        assert blocked.block_reason == BlockReason.CONSENT_REQUIRED
        assert blocked.prompt is not None
        executor.assert_not_awaited()

        assert gate.record_human_response("yes") == ConsentMode.EXECUTE
        result = await gate.gate(RG, GOOD)
        assert result.status == GateStatus.EXECUTED

    def test_later_responses_are_ignored(self, engine, executor):
        gate, _ = make_gate(engine, executor)
        assert gate.record_human_response("dry run") == ConsentMode.SIMULATE
        assert gate.record_human_response("yes") is None
        assert gate.state.mode == ConsentMode.SIMULATE

    def test_unrecognised_response_changes_nothing(self, engine, executor):
        gate, _ = make_gate(engine, executor)
        assert gate.record_human_response("perhaps") is None
        assert gate.state.asked_once is False

    def test_cancel_counts_as_no(self, engine, executor):
        gate, _ = make_gate(engine, executor)
        state = gate.cancel()
        assert state.mode == ConsentMode.DENY
        assert state.asked_once is True


class TestPrompting:
    @pytest.mark.asyncio
    async def test_unrecognised_reply_reprompts(self, engine, executor):
        gate, prompter = make_gate(engine, executor, replies=["maybe", "YES "])
        result = await gate.gate(RG, GOOD)
        assert result.status == GateStatus.EXECUTED
        assert prompter.await_count == 2
        attempts = [call.args[0].attempt for call in prompter.await_args_list]
        assert attempts == [1, 2]

    @pytest.mark.asyncio
    async def test_too_many_unrecognised_replies_is_no(self, engine, executor):
        gate, prompter = make_gate(engine, executor, replies=["hmm", "what"], max_prompts=2)
        result = await gate.gate(RG, GOOD)
        assert result.block_reason == BlockReason.CONSENT_DECLINED
        assert gate.state.mode == ConsentMode.DENY

    @pytest.mark.asyncio
    async def test_cancelled_prompt_records_no_and_propagates(self, engine, executor):
        gate = ConsentGate(engine, executor, prompter=AsyncMock(side_effect=asyncio.CancelledError()))
        with pytest.raises(asyncio.CancelledError):
            await gate.gate(RG, GOOD)
        assert gate.state.mode == ConsentMode.DENY
        executor.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_timeout_is_no(self, engine, executor):
        async def slow(prompt):
            await asyncio.sleep(5)
            return "yes"

        gate = ConsentGate(engine, executor, prompter=slow, timeout_seconds=0.01)
        result = await gate.gate(RG, GOOD)
        assert result.block_reason == BlockReason.CONSENT_DECLINED
        executor.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_calls_prompt_once(self, engine, executor):
        gate, prompter = make_gate(engine, executor, replies=["yes", "yes"])
        results = await asyncio.gather(gate.gate(RG, GOOD), gate.gate(RG, {"name": "rg-b"}))
        assert [r.status for r in results] == [GateStatus.EXECUTED, GateStatus.EXECUTED]
        assert prompter.await_count == 1


class TestExecutionAndAudit:
    @pytest.mark.asyncio
    async def test_executor_failure_is_reported(self, engine):
        failing = AsyncMock(side_effect=RuntimeError("quota exceeded"))
        gate, _ = make_gate(engine, failing, replies=["yes"])
        result = await gate.gate(RG, GOOD)
        assert result.status == GateStatus.EXECUTED
        assert result.error == "quota exceeded"
        assert result.result is None

    @pytest.mark.asyncio
    async def test_every_outcome_is_audited(self, engine, executor):
        audit = GateAuditLog()
        gate, _ = make_gate(engine, executor, replies=["yes"], audit_log=audit)
        await gate.gate(RG, BANNED)
        await gate.gate(RG, GOOD)
        await gate.gate("docs.search", {})
        assert [e.status for e in audit.entries] == ["blocked", "executed", "executed"]
        assert audit.entries[0].block_reason == "policy_deny"
        assert audit.entries[0].policy_ids == ["azure.create_resource_group.denyNames"]
        assert audit.entries[1].consent_mode == "execute"
        assert len(audit.for_action(RG)) == 2

    @pytest.mark.asyncio
    async def test_result_wire_shape(self, engine, executor):
        gate, _ = make_gate(engine, executor, replies=["dry run"])
        out = (await gate.gate(RG, GOOD)).to_dict()
        assert out["status"] == "simulated"
        assert out["decision"]["decision"] == "allow"
        assert out["result"]["simulated"] is True

    def test_from_settings(self, engine, executor):
        settings = GovernanceSettings(
            state_changing_prefixes="teams", safe_actions="teams.list_channels",
            max_consent_prompts=5,
        )
        gate = ConsentGate.from_settings(engine, executor, settings=settings)
        assert gate.is_state_changing("teams.create_channel")
        assert not gate.is_state_changing("teams.list_channels")
        assert not gate.is_state_changing(RG)

    @pytest.mark.asyncio
    async def test_asking_without_prompter_is_an_error(self, engine, executor):
        gate, _ = make_gate(engine, executor)
        with pytest.raises(RuntimeError, match="no prompter"):
            await gate._read_reply(ConsentPrompt(RG, GOOD, engine.evaluate(RG, GOOD)))
