"""Reading a pipeline description: a JSON list of modules chained by ``next_id``."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from os import PathLike
from typing import Any

log = logging.getLogger(__name__)

REQUIRED_FIELDS_HINT = "Every module should contain id, name, parameters, type, next_id"


class ModuleType(IntEnum):
    """Role of a module in the pipeline."""

    UNDEFINED = -1
    FIRST = 1
    MIDDLE = 2
    LAST = 0


class ConfigError(ValueError):
    """The configuration file is missing, unreadable or ill-formed."""


@dataclass
class ModuleDescription:
    """One pipeline module: how to start it and which module follows it."""

    argv: list[str] = field(default_factory=list)
    id: int = 0
    type: ModuleType = ModuleType.UNDEFINED
    next: int = -1


def _wrong_type(module: Any, real: Any, should: str) -> ConfigError:
    return ConfigError(
        f"Wrong type of {json.dumps(module)}, should be {should}, but is {json.dumps(real)}"
    )


def _as_int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{what} must be a number, got {json.dumps(value)}")
    return int(value)


def _parse_module(entry: Any, first_seen: bool) -> ModuleDescription:
    if not isinstance(entry, dict):
        raise ConfigError(f"module must be an object, got {json.dumps(entry)}")

    module_id = _as_int(entry.get("id"), "id")

    params = entry.get("parameters")
    if not isinstance(params, list) or not all(isinstance(p, str) for p in params):
        raise ConfigError(f"parameters must be a list of strings, got {json.dumps(params)}")

    name = entry.get("name")
    argv: list[str] = []
    if name is not None:
        if not isinstance(name, str):
            raise ConfigError(f"name must be a string, got {json.dumps(name)}")
        argv.append(name)
    argv.extend(params)

    module_type = entry.get("type")
    next_id = entry.get("next_id")
    if next_id is not None:
        next_index = _as_int(next_id, "next_id")
        if module_type == "LAST":
            raise _wrong_type(entry, module_type, "MIDDLE")
        kind = ModuleType.MIDDLE
    else:
        next_index = -1
        if module_type != "LAST":
            raise _wrong_type(entry, module_type, "LAST")
        kind = ModuleType.LAST

    if module_type == "FIRST":
        if first_seen:
            raise _wrong_type(entry, module_type, "MIDDLE")
        kind = ModuleType.FIRST

    return ModuleDescription(argv=argv, id=module_id, type=kind, next=next_index)


def read_configuration(path: str | PathLike[str] | None) -> list[ModuleDescription]:
    """Read the modules described in the JSON file at ``path``.

    Raises ConfigError when the file cannot be opened or parsed, when a module
    is ill-formed, or when no module has type FIRST.
    """
    if not path:
        log.error("Empty string instead of fileName(.json)")
        raise ConfigError("empty configuration file name")

    try:
        with open(path, encoding="utf-8") as handle:
            text = handle.read()
    except OSError as exc:
        log.error("Failed to open %s", path)
        raise ConfigError(f"failed to open {path}: {exc}") from exc

    try:
        document = json.loads(text)
    except ValueError as exc:
        log.error("Failed parse json file %s", path)
        raise ConfigError(f"failed to parse {path}: {exc}") from exc

    if isinstance(document, dict):
        entries = list(document.values())
    elif isinstance(document, list):
        entries = document
    else:
        entries = [document]

    modules: list[ModuleDescription] = []
    first_seen = False
    for entry in entries:
        try:
            module = _parse_module(entry, first_seen)
        except ConfigError as exc:
            log.error("Invalid json file %s", path)
            log.error(REQUIRED_FIELDS_HINT)
            log.error('Error was "%s"', exc)
            raise
        first_seen = first_seen or module.type == ModuleType.FIRST
        modules.append(module)

    if not first_seen:
        log.error("No FIRST type")
        raise ConfigError(f"no module of type FIRST in {path}")
    return modules