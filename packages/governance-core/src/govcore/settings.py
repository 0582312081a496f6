"""Governance configuration via environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings


def _split_csv(raw: str) -> list[str]:
    return [x.strip() for x in (raw or "").split(",") if x.strip()]


class GovernanceSettings(BaseSettings):
    """All configuration loaded from GOVERNANCE_* env vars or .env file."""

    # Rule documents
    rules_dir: str = "governance"
    ato_profile: str = ""

    # Consent gate
    state_changing_prefixes: str = "azure,github,teams"
    safe_actions: str = ""
    consent_timeout_seconds: float | None = None  # None = wait forever
    max_consent_prompts: int = 3

    model_config = {
        "env_prefix": "GOVERNANCE_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def rule_paths(self) -> list[Path]:
        return [Path(self.rules_dir)]

    @property
    def prefixes(self) -> tuple[str, ...]:
        return tuple(_split_csv(self.state_changing_prefixes))

    @property
    def safe_action_names(self) -> frozenset[str]:
        return frozenset(_split_csv(self.safe_actions))
