"""Rule document validation — permissive parse plus strict drift check.

The permissive pass (pydantic, unknown keys allowed) produces the document
that is actually used. The strict pass runs the same schema through
``jsonschema`` with ``additionalProperties: false`` forced onto every object
that declares properties; its errors are returned as warnings and never
abort loading.
"""

from __future__ import annotations

import copy
import logging
from functools import lru_cache

import jsonschema
from pydantic import ValidationError

from govcore.errors import ConfigParseError
from govcore.models import PolicyDocument

logger = logging.getLogger(__name__)


def _forbid_additional(node: object) -> None:
    if isinstance(node, dict):
        if "properties" in node:
            node["additionalProperties"] = False
        for value in node.values():
            _forbid_additional(value)
    elif isinstance(node, list):
        for item in node:
            _forbid_additional(item)


@lru_cache(maxsize=1)
def strict_schema() -> dict:
    """JSON Schema of PolicyDocument with unknown keys forbidden everywhere."""
    schema = copy.deepcopy(PolicyDocument.model_json_schema())
    _forbid_additional(schema)
    return schema


def _format_pydantic_error(err: dict) -> str:
    loc = ".".join(str(p) for p in err.get("loc", ()))
    return f"$.{loc}: {err.get('msg', 'invalid value')}" if loc else err.get("msg", "")


def validate_permissive(raw: dict) -> PolicyDocument:
    """Parse *raw* into a PolicyDocument, accepting unknown keys silently."""
    try:
        return PolicyDocument.model_validate(raw)
    except ValidationError as e:
        errors = [_format_pydantic_error(err) for err in e.errors()]
        raise ConfigParseError(
            f"Policy document failed validation ({len(errors)} error(s))",
            errors=errors,
        ) from e


def _leaf_errors(error: jsonschema.ValidationError):
    # optional sections are anyOf[model, null]; report the model branch
    if not error.context:
        yield error
        return
    specific = [e for e in error.context if e.validator != "type"] or list(error.context)
    for sub in specific:
        yield from _leaf_errors(sub)


def validate_strict(raw: dict) -> list[str]:
    """Return one warning per unknown or misspelled key in *raw*."""
    validator = jsonschema.Draft202012Validator(strict_schema())
    leaves = [leaf for e in validator.iter_errors(raw) for leaf in _leaf_errors(e)]
    warnings = sorted({f"{e.json_path}: {e.message}" for e in leaves})
    for w in warnings:
        logger.warning("Policy schema drift: %s", w)
    return warnings
