"""Configuration loading and manipulation helpers."""

from __future__ import annotations

import copy
from dataclasses import fields
from pathlib import Path
from typing import Any, Mapping, MutableMapping, TypeVar

import yaml

T = TypeVar("T")


def load_config(config_path: Path) -> Mapping[str, Any]:
    """
    Parse a YAML run configuration into a nested mapping.

    Sections (``data``, ``model``, ``iteration``, ``mapping``, ``report``) are
    turned into typed dataclasses by their consumers via `build_dataclass`.
    """
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def clone_config(config: Mapping[str, Any]) -> dict[str, Any]:
    return copy.deepcopy(dict(config))


def set_by_dotted_path(
    config: MutableMapping[str, Any],
    dotted_key: str,
    value: Any,
) -> None:
    """
    Assign a value inside a nested mapping, creating sections as needed.

    Examples
    --------
    >>> cfg = {"model": {"learn_rate": 0.01}}
    >>> set_by_dotted_path(cfg, "iteration.max_iter", 60)
    >>> cfg["iteration"]["max_iter"]
    60
    """
    *parents, leaf = dotted_key.split(".")
    current: MutableMapping[str, Any] = config
    for key in parents:
        child = current.get(key)
        if not isinstance(child, MutableMapping):
            child = {}
            current[key] = child
        current = child
    current[leaf] = value


def get_by_dotted_path(config: Mapping[str, Any], dotted_key: str, default: Any = None) -> Any:
    current: Any = config
    for key in dotted_key.split("."):
        if not isinstance(current, Mapping) or key not in current:
            return default
        current = current[key]
    return current


def build_dataclass(cls: type[T], section: Mapping[str, Any] | None) -> T:
    """
    Instantiate a config dataclass from a mapping section.

    Keys that do not name a dataclass field raise ``ValueError`` so typos in
    YAML files surface immediately instead of silently falling back to
    defaults.
    """
    section = dict(section or {})
    known = {item.name for item in fields(cls)}  # type: ignore[arg-type]
    unknown = sorted(set(section) - known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} option(s): {', '.join(unknown)}")
    return cls(**section)
