"""Consent Gate — session-scoped human approval for state-changing actions."""

from govcore.consent.audit import GateAuditEntry, GateAuditLog
from govcore.consent.gate import (
    BlockReason,
    ConsentGate,
    ConsentPrompt,
    GateResult,
    GateStatus,
)
from govcore.consent.state import ConsentMode, ConsentState, parse_consent_response

__all__ = [
    "BlockReason",
    "ConsentGate",
    "ConsentMode",
    "ConsentPrompt",
    "ConsentState",
    "GateAuditEntry",
    "GateAuditLog",
    "GateResult",
    "GateStatus",
    "parse_consent_response",
]
