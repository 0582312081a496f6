"""Tests for GovernanceSettings — env parsing and derived values."""

from pathlib import Path

from govcore.settings import GovernanceSettings

ENV_VARS = (
    "GOVERNANCE_RULES_DIR",
    "GOVERNANCE_ATO_PROFILE",
    "GOVERNANCE_STATE_CHANGING_PREFIXES",
    "GOVERNANCE_SAFE_ACTIONS",
    "GOVERNANCE_CONSENT_TIMEOUT_SECONDS",
    "GOVERNANCE_MAX_CONSENT_PROMPTS",
)


class TestGovernanceSettings:
    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        for name in ENV_VARS:
            monkeypatch.delenv(name, raising=False)
        settings = GovernanceSettings()
        assert settings.rule_paths == [Path("governance")]
        assert settings.prefixes == ("azure", "github", "teams")
        assert settings.safe_action_names == frozenset()
        assert settings.consent_timeout_seconds is None
        assert settings.max_consent_prompts == 3

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("GOVERNANCE_RULES_DIR", "/etc/governance")
        monkeypatch.setenv("GOVERNANCE_STATE_CHANGING_PREFIXES", " azure , ,github ")
        monkeypatch.setenv("GOVERNANCE_SAFE_ACTIONS", "azure.list_resource_groups,github.get_repo")
        monkeypatch.setenv("GOVERNANCE_CONSENT_TIMEOUT_SECONDS", "30")
        monkeypatch.setenv("GOVERNANCE_ATO_PROFILE", "strict")
        settings = GovernanceSettings()
        assert settings.rule_paths == [Path("/etc/governance")]
        assert settings.prefixes == ("azure", "github")
        assert settings.safe_action_names == {"azure.list_resource_groups", "github.get_repo"}
        assert settings.consent_timeout_seconds == 30.0
        assert settings.ato_profile == "strict"

    def test_dotenv_file(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("GOVERNANCE_MAX_CONSENT_PROMPTS=1\nUNRELATED=x\n")
        assert GovernanceSettings().max_consent_prompts == 1
