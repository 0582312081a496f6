"""Atomic checks — one typed predicate over one dotted field path.

Each check returns ``None`` when satisfied or a human-readable violation.
Checks are pure; evaluation order within a rule never changes the outcome.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable


class CheckKind(Enum):
    REGEX_MATCH = "regex"
    NO_WHITESPACE = "noSpaces"
    VALUE_IN_ALLOWED_SET = "allowedValues"
    REQUIRED_KEYS_PRESENT = "requiredTags"
    BOOLEAN_MUST_BE_TRUE = "requiredTrue"
    FIELD_MUST_BE_PRESENT = "requiredPresent"
    EQUALS = "equals"
    NOT_EQUALS = "notEquals"


class _Missing:
    """Sentinel for a field path that does not resolve."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


@dataclass(frozen=True)
class Check:
    kind: CheckKind
    path: str
    message: str | None = None
    pattern: str | None = None
    ignore_case: bool = False
    values: tuple[Any, ...] = ()
    keys: tuple[str, ...] = ()
    expected: Any = None
    fallback_paths: tuple[str, ...] = ()
    normalize: str | None = None

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"type": self.kind.value, "path": self.path}
        if self.kind is CheckKind.REGEX_MATCH:
            out["pattern"] = self.pattern
            if self.ignore_case:
                out["ignore_case"] = True
        elif self.kind is CheckKind.VALUE_IN_ALLOWED_SET:
            out["values"] = list(self.values)
            if self.ignore_case:
                out["ignore_case"] = True
            if self.normalize:
                out["normalize"] = self.normalize
        elif self.kind is CheckKind.REQUIRED_KEYS_PRESENT:
            out["keys"] = list(self.keys)
        elif self.kind in (CheckKind.EQUALS, CheckKind.NOT_EQUALS):
            out["value"] = self.expected
        if self.fallback_paths:
            out["fallback_paths"] = list(self.fallback_paths)
        if self.message:
            out["message"] = self.message
        return out


def resolve_path(args: Any, dotted: str) -> Any:
    """Walk *dotted* through nested mappings; any missing segment is MISSING."""
    if not dotted:
        return args
    current = args
    for segment in dotted.split("."):
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return MISSING
    return current


def _as_text(value: Any) -> str:
    # JSON spelling so YAML booleans/nulls compare like their literals
    if value is None or isinstance(value, bool):
        return json.dumps(value)
    return str(value)


_PLAN_SKU_FAMILY = re.compile(r"^([A-Za-z]+[0-9]+)")


def plan_sku_family(text: str) -> str:
    """App Service Plan SKU family: ``P1v3`` -> ``P1``, ``b1`` -> ``B1``."""
    text = text.strip()
    m = _PLAN_SKU_FAMILY.match(text)
    return (m.group(1) if m else text).upper()


# Looked up by the name in Check.normalize.
NORMALIZERS: dict[str, Callable[[str], str]] = {
    "planSkuFamily": plan_sku_family,
}


def _comparable(text: str, c: Check) -> str:
    if c.normalize:
        text = NORMALIZERS[c.normalize](text)
    return text.casefold() if c.ignore_case else text


def _same(a: Any, b: Any) -> bool:
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    return a == b


def _regex(value: Any, c: Check) -> str | None:
    flags = re.IGNORECASE if c.ignore_case else 0
    ok = isinstance(value, str) and re.search(c.pattern or "", value, flags) is not None
    return None if ok else (c.message or f"Field '{c.path}' must match {c.pattern}")


def _no_whitespace(value: Any, c: Check) -> str | None:
    if value is MISSING:
        return c.message or f"Field '{c.path}' is required"
    if isinstance(value, str) and any(ch.isspace() for ch in value):
        return c.message or f"Field '{c.path}' must not contain spaces"
    return None


def _allowed_values(value: Any, c: Check) -> str | None:
    allowed = [_as_text(v) for v in c.values]
    if value is not MISSING:
        if _comparable(_as_text(value), c) in {_comparable(a, c) for a in allowed}:
            return None
    return c.message or f"Field '{c.path}' must be one of: {', '.join(allowed)}"


def _required_keys(value: Any, c: Check) -> str | None:
    present = value if isinstance(value, dict) else {}
    missing = [k for k in c.keys if k not in present]
    if not missing:
        return None
    return c.message or f"Missing required tags: {', '.join(missing)}"


def _required_true(value: Any, c: Check) -> str | None:
    return None if value is True else (c.message or f"Field '{c.path}' must be true")


def _required_present(value: Any, c: Check) -> str | None:
    absent = (
        value is MISSING
        or value is None
        or (isinstance(value, str) and not value.strip())
    )
    return (c.message or f"Field '{c.path}' is required") if absent else None


def _equals(value: Any, c: Check) -> str | None:
    if value is not MISSING and _same(value, c.expected):
        return None
    return c.message or f"Field '{c.path}' must equal {json.dumps(c.expected, default=str)}"


def _not_equals(value: Any, c: Check) -> str | None:
    if value is not MISSING and not _same(value, c.expected):
        return None
    return c.message or f"Field '{c.path}' must not equal {json.dumps(c.expected, default=str)}"


_EVALUATORS: dict[CheckKind, Callable[[Any, Check], str | None]] = {
    CheckKind.REGEX_MATCH: _regex,
    CheckKind.NO_WHITESPACE: _no_whitespace,
    CheckKind.VALUE_IN_ALLOWED_SET: _allowed_values,
    CheckKind.REQUIRED_KEYS_PRESENT: _required_keys,
    CheckKind.BOOLEAN_MUST_BE_TRUE: _required_true,
    CheckKind.FIELD_MUST_BE_PRESENT: _required_present,
    CheckKind.EQUALS: _equals,
    CheckKind.NOT_EQUALS: _not_equals,
}

def resolve_check_value(args: Any, check: Check) -> Any:
    """Value at the check's path; absent or null falls through to the fallback paths."""
    value = resolve_path(args, check.path)
    for path in check.fallback_paths:
        if value is not MISSING and value is not None:
            break
        candidate = resolve_path(args, path)
        if candidate is not MISSING:
            value = candidate
    return value


def run_check(args: Any, check: Check) -> str | None:
    """Evaluate one check against call arguments."""
    return _EVALUATORS[check.kind](resolve_check_value(args, check), check)
