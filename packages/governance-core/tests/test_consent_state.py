"""Tests for ConsentState and the reply vocabulary."""

import pytest

from govcore.consent.state import ConsentMode, ConsentState, parse_consent_response


class TestParseConsentResponse:
    @pytest.mark.parametrize("raw", ["yes", "Y", "  execute ", "APPROVE"])
    def test_execute_words(self, raw):
        assert parse_consent_response(raw) == ConsentMode.EXECUTE

    @pytest.mark.parametrize("raw", ["dry run", "Dry  Run", "dry-run", "dry", "simulate"])
    def test_simulate_words(self, raw):
        assert parse_consent_response(raw) == ConsentMode.SIMULATE

    @pytest.mark.parametrize("raw", ["no", "N", "cancel", "deny"])
    def test_deny_words(self, raw):
        assert parse_consent_response(raw) == ConsentMode.DENY

    @pytest.mark.parametrize("raw", ["", None, "maybe", "yes please", "undecided"])
    def test_unrecognised(self, raw):
        assert parse_consent_response(raw) is None


class TestConsentState:
    def test_initial_state(self):
        state = ConsentState()
        assert state.mode == ConsentMode.UNDECIDED
        assert state.asked_once is False
        assert not state.decided

    def test_record_latches_asked_once(self):
        state = ConsentState().record(ConsentMode.SIMULATE)
        assert state.mode == ConsentMode.SIMULATE
        assert state.asked_once is True
        assert state.decided

    def test_record_returns_new_value(self):
        original = ConsentState()
        original.record(ConsentMode.EXECUTE)
        assert original.mode == ConsentMode.UNDECIDED

    def test_second_answer_rejected(self):
        state = ConsentState().record(ConsentMode.DENY)
        with pytest.raises(ValueError, match="already recorded"):
            state.record(ConsentMode.EXECUTE)

    def test_cannot_record_undecided(self):
        with pytest.raises(ValueError):
            ConsentState().record(ConsentMode.UNDECIDED)
