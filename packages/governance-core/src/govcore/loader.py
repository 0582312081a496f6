"""Policy source loader — reads rule documents and deep-merges them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml

from govcore.errors import ConfigNotFound, ConfigParseError, MergeConflict

logger = logging.getLogger(__name__)

DOCUMENT_SUFFIXES = (".yaml", ".yml", ".json")


def deep_merge(base: Any, override: Any, _path: str = "") -> Any:
    """Recursively merge *override* into *base*.

    - Dicts are merged recursively.
    - Lists from *override* replace those in *base* wholesale.
    - A list merged onto an existing non-list raises MergeConflict.
    - Scalars from *override* win; a missing (None) *override* keeps *base*.
    """
    if override is None:
        return base
    if isinstance(base, dict) and isinstance(override, dict):
        merged = dict(base)
        for key, value in override.items():
            child = f"{_path}.{key}" if _path else str(key)
            merged[key] = deep_merge(merged.get(key), value, child)
        return merged
    if isinstance(override, list):
        if base is not None and not isinstance(base, list):
            raise MergeConflict(_path or "<root>", type(base).__name__)
        return list(override)
    return override


def _read_document(path: Path) -> dict:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigParseError(f"{path}: invalid YAML/JSON", errors=[str(e)]) from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigParseError(
            f"{path}: document root must be a mapping, got {type(data).__name__}"
        )
    return data


def _expand(path: Path) -> list[Path]:
    """Files contributed by *path*; directories expand in lexicographic order."""
    if not path.exists():
        raise ConfigNotFound(str(path))
    if path.is_dir():
        return sorted(
            p for p in path.iterdir()
            if p.is_file() and p.suffix.lower() in DOCUMENT_SUFFIXES
        )
    return [path]


@dataclass
class LoadedPolicy:
    """Merged raw document plus where it came from."""

    raw: dict = field(default_factory=dict)
    sources: list[Path] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class PolicyLoader:
    """Load and merge one or more rule documents or directories."""

    def load(self, paths: Iterable[str | Path]) -> LoadedPolicy:
        result = LoadedPolicy()
        for raw_path in paths:
            try:
                files = _expand(Path(raw_path))
            except ConfigNotFound as e:
                logger.warning("%s; skipped", e)
                result.warnings.append(str(e))
                continue

            for file_path in files:
                document = _read_document(file_path)
                try:
                    result.raw = deep_merge(result.raw, document)
                except MergeConflict:
                    logger.error("Merge conflict while applying %s", file_path)
                    raise
                result.sources.append(file_path)
                logger.debug("Merged policy source %s", file_path)

        return result
