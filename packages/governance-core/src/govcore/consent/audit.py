"""In-memory audit trail of consent-gate outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass
class GateAuditEntry:
    action: str
    status: str
    verdict: str
    consent_mode: str
    policy_ids: list[str] = field(default_factory=list)
    block_reason: str = ""
    error: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class GateAuditLog:
    def __init__(self) -> None:
        self.entries: list[GateAuditEntry] = []

    def log(self, entry: GateAuditEntry) -> None:
        self.entries.append(entry)

    def for_action(self, action: str) -> list[GateAuditEntry]:
        return [e for e in self.entries if e.action == action]
