"""
Codex CLI adapter: ``exec --json`` lifecycle events, prompt on stdin (``-``).

Observed event types:
  - thread.started → session start
  - turn.started / turn.completed → turn lifecycle + usage
  - item.started → command_execution in progress
  - item.completed → agent_message (text), reasoning, command_execution (result)
  - error / turn.failed → errors
"""

from __future__ import annotations

import os
from typing import Sequence

from skillwriter.backends.base import (
    BackendAdapter,
    ModelEntry,
    PathLike,
    as_dict,
    load_json_object,
    non_empty_str,
    work_dir_for,
)
from skillwriter.events import EMPTY_EVENT, StreamEvent, TokenUsage, to_int

BACKEND = "codex"
AGENT_ID = "codex"
AGENT_NAME = "Codex"

MODELS: dict[str, ModelEntry] = {
    "gpt-5.2-codex": ModelEntry("gpt-5.2-codex", "GPT-5.2 Codex", "Frontier agentic coding model"),
    "gpt-5.1-codex-max": ModelEntry("gpt-5.1-codex-max", "GPT-5.1 Codex Max", "Codex-optimized flagship"),
    "gpt-5.2": ModelEntry("gpt-5.2", "GPT-5.2", "Latest frontier model"),
    "gpt-5.1-codex-mini": ModelEntry(
        "gpt-5.1-codex-mini", "GPT-5.1 Codex Mini", "Optimized for codex, cheaper & faster",
        recommended=True,
    ),
}


def build_invocation_args(
    model: str, skill_dir: PathLike, extra_read_dirs: Sequence[PathLike] = (),
) -> list[str]:
    args = [
        "exec",
        "--json",
        "--model", model,
        "--full-auto",
        "--writeable-dirs", work_dir_for(skill_dir),
        "--add-dir", os.fspath(skill_dir),
    ]
    for d in extra_read_dirs:
        args += ["--add-dir", os.fspath(d)]
    args.append("-")
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
    item = as_dict(obj.get("item"))

    if kind == "item.completed" and item:
        text = non_empty_str(item.get("text"))
        if item.get("type") == "agent_message" and text:
            return StreamEvent(full_text=text)
        output = non_empty_str(item.get("aggregated_output"))
        if item.get("type") == "command_execution" and output:
            command = item.get("command") or ""
            # A redirect means the command output landed in a file
            redirected = isinstance(command, str) and ">" in command
            return StreamEvent(
                tool_name="Bash",
                tool_hint=f"({len(output)} chars output)",
                write_content=output if redirected else None,
            )

    if kind == "item.started" and item.get("type") == "command_execution":
        return StreamEvent(tool_name="Bash", tool_hint=non_empty_str(item.get("command")))

    if kind == "turn.completed" and isinstance(obj.get("usage"), dict):
        usage = obj["usage"]
        return StreamEvent(
            done=True,
            usage=TokenUsage(
                input=to_int(usage.get("input_tokens")),
                output=to_int(usage.get("output_tokens")),
            ),
        )

    if kind in ("turn.failed", "error"):
        return StreamEvent(done=True)

    return EMPTY_EVENT


ADAPTER = BackendAdapter(
    name=BACKEND,
    agent_id=AGENT_ID,
    agent_name=AGENT_NAME,
    build_invocation_args=build_invocation_args,
    parse_line=parse_line,
    models=MODELS,
)
