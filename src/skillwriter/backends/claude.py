"""
Claude CLI adapter: token-level streaming via ``--include-partial-messages``.

Event types:
  - stream_event / content_block_delta / text_delta → token streaming
  - assistant message with tool_use content → tool name, input hint, Write payload
  - assistant message with text content → full text (non-partial fallback)
  - result → usage, cost, turns
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
    work_dir_for,
)
from skillwriter.events import (
    EMPTY_EVENT,
    StreamEvent,
    TokenUsage,
    first_present,
    optional_float,
    optional_int,
    to_int,
)

BACKEND = "claude"
AGENT_ID = "claude-code"
AGENT_NAME = "Claude Code"

MODELS: dict[str, ModelEntry] = {
    "opus": ModelEntry("opus", "Opus 4.6", "Most capable for complex work"),
    "sonnet": ModelEntry("sonnet", "Sonnet 4.5", "Best for everyday tasks", recommended=True),
    "haiku": ModelEntry("haiku", "Haiku 4.5", "Fastest for quick answers"),
}

# Keys of a tool_use input worth showing as a progress hint, in priority order
_HINT_KEYS = ("file_path", "path", "pattern", "query", "command")


def build_invocation_args(
    model: str, skill_dir: PathLike, extra_read_dirs: Sequence[PathLike] = (),
) -> list[str]:
    skill_dir = os.fspath(skill_dir)
    extra = [os.fspath(d) for d in extra_read_dirs]
    read_dirs = [skill_dir, *extra]

    allowed_tools: list[str] = []
    for d in read_dirs:
        allowed_tools += [f"Read({d}/**)", f"Glob({d}/**)", f"Grep({d}/**)"]
    allowed_tools.append(f"Write({work_dir_for(skill_dir)}/**)")
    allowed_tools.append("Bash(*skilld search*)")

    args = [
        "-p",
        "--model", model,
        "--output-format", "stream-json",
        "--verbose",
        "--include-partial-messages",
        "--allowedTools", " ".join(allowed_tools),
        "--add-dir", skill_dir,
    ]
    for d in extra:
        args += ["--add-dir", d]
    args.append("--no-session-persistence")
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

    if kind == "stream_event":
        evt = as_dict(obj.get("event"))
        delta = as_dict(evt.get("delta"))
        if evt.get("type") == "content_block_delta" and delta.get("type") == "text_delta":
            text = non_empty_str(delta.get("text"))
            return StreamEvent(text_delta=text) if text else EMPTY_EVENT
        return EMPTY_EVENT

    if kind == "assistant":
        content = as_dict(obj.get("message")).get("content")
        if not isinstance(content, list):
            return EMPTY_EVENT
        blocks = [c for c in content if isinstance(c, dict)]

        tools = [b for b in blocks if b.get("type") == "tool_use"]
        if tools:
            names = ", ".join(str(t.get("name", "")) for t in tools)
            hints = []
            for t in tools:
                tool_input = as_dict(t.get("input"))
                hint = first_truthy(tool_input, _HINT_KEYS)
                if hint:
                    hints.append(str(hint))
            # Write payload doubles as output if the real write is denied
            write_content = None
            for t in tools:
                if t.get("name") == "Write":
                    write_content = non_empty_str(as_dict(t.get("input")).get("content"))
                    if write_content:
                        break
            return StreamEvent(
                tool_name=names,
                tool_hint=", ".join(hints) or None,
                write_content=write_content,
            )

        text = "".join(
            b["text"] for b in blocks
            if b.get("type") == "text" and isinstance(b.get("text"), str)
        )
        return StreamEvent(full_text=text) if text else EMPTY_EVENT

    if kind == "result":
        u = obj.get("usage")
        usage = None
        if isinstance(u, dict):
            usage = TokenUsage(
                input=to_int(first_present(u, "input_tokens", "inputTokens")),
                output=to_int(first_present(u, "output_tokens", "outputTokens")),
            )
        return StreamEvent(
            done=True,
            usage=usage,
            cost=optional_float(obj.get("total_cost_usd")),
            turns=optional_int(obj.get("num_turns")),
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
