"""Shared adapter contract for backend CLIs."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Sequence, Union

from skillwriter.events import StreamEvent
from skillwriter.sections import WORK_SUBDIR

PathLike = Union[str, "os.PathLike[str]"]


@dataclass(frozen=True)
class ModelEntry:
    """One model a backend CLI can run, as declared by its adapter module."""

    backend_model: str   # value passed to the CLI's model flag
    display_name: str
    hint: str
    recommended: bool = False


@dataclass(frozen=True)
class BackendAdapter:
    """Strategy pair for one backend: argv builder and line parser.

    Both callables are pure. ``parse_line`` never raises; a line it cannot
    interpret yields an empty StreamEvent.
    """

    name: str              # backend id, also the default executable
    agent_id: str
    agent_name: str
    build_invocation_args: Callable[[str, PathLike, Sequence[PathLike]], list[str]]
    parse_line: Callable[[str], StreamEvent]
    models: dict[str, ModelEntry]


def work_dir_for(skill_dir: PathLike) -> str:
    """Writable work dir inside a skill directory."""
    return os.fspath(Path(skill_dir) / WORK_SUBDIR)


def load_json_object(line: str) -> dict | None:
    """Decode one wire line; None when it is not a JSON object."""
    try:
        obj = json.loads(line)
    except (TypeError, ValueError):
        return None
    return obj if isinstance(obj, dict) else None


def as_dict(value: object) -> dict:
    return value if isinstance(value, dict) else {}


def non_empty_str(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def first_truthy(obj: dict, keys: Sequence[str]) -> object:
    for key in keys:
        if obj.get(key):
            return obj[key]
    return None
