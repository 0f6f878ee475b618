"""
Gemini CLI adapter: turn-level streaming via ``-o stream-json``.

Gemini has no writeable-dirs flag; writes are scoped by running the process
with the work dir as cwd.
"""

from __future__ import annotations

import os
from typing import Sequence

from skillwriter.backends.base import (
    BackendAdapter,
    ModelEntry,
    PathLike,
    as_dict,
    first_truthy,
    load_json_object,
    non_empty_str,
)
from skillwriter.events import (
    EMPTY_EVENT,
    StreamEvent,
    TokenUsage,
    first_present,
    optional_int,
    to_int,
)

BACKEND = "gemini"
AGENT_ID = "gemini-cli"
AGENT_NAME = "Gemini CLI"

MODELS: dict[str, ModelEntry] = {
    "gemini-3-pro": ModelEntry("gemini-3-pro-preview", "Gemini 3 Pro", "Most capable"),
    "gemini-3-flash": ModelEntry("gemini-3-flash-preview", "Gemini 3 Flash", "Balanced", recommended=True),
}

ALLOWED_TOOLS = "read_file,write_file,glob_tool"


def build_invocation_args(
    model: str, skill_dir: PathLike, extra_read_dirs: Sequence[PathLike] = (),
) -> list[str]:
    args = [
        "-o", "stream-json",
        "-m", model,
        "--allowed-tools", ALLOWED_TOOLS,
        "--include-directories", os.fspath(skill_dir),
    ]
    for d in extra_read_dirs:
        args += ["--include-directories", os.fspath(d)]
    return args


def parse_line(line: str) -> StreamEvent:
    obj = load_json_object(line)
    if obj is None:
        return EMPTY_EVENT
    try:
        return _parse(obj)
    except (AttributeError, TypeError, ValueError):
        return EMPTY_EVENT


def _parse(obj: dict) -> StreamEvent:
    kind = obj.get("type")

    if kind == "message" and obj.get("role") == "assistant":
        content = non_empty_str(obj.get("content"))
        if not content:
            return EMPTY_EVENT
        if obj.get("delta"):
            return StreamEvent(text_delta=content)
        return StreamEvent(full_text=content)

    if kind in ("tool_use", "tool_call"):
        name = str(first_truthy(obj, ("tool_name", "name", "tool")) or "tool")
        if name == "write_file":
            content = non_empty_str(as_dict(obj.get("args")).get("content"))
            if content:
                return StreamEvent(tool_name=name, write_content=content)
        return StreamEvent(tool_name=name)

    if kind == "result":
        stats = obj.get("stats")
        if not isinstance(stats, dict):
            return StreamEvent(done=True)
        return StreamEvent(
            done=True,
            usage=TokenUsage(
                input=to_int(first_present(stats, "input_tokens", "input")),
                output=to_int(first_present(stats, "output_tokens", "output")),
            ),
            turns=optional_int(stats.get("tool_calls")),
        )

    return EMPTY_EVENT


ADAPTER = BackendAdapter(
    name=BACKEND,
    agent_id=AGENT_ID,
    agent_name=AGENT_NAME,
    build_invocation_args=build_invocation_args,
    parse_line=parse_line,
    models=MODELS,
)
