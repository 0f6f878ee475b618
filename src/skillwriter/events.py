"""
StreamEvent: normalized event model for backend output streams.

Each backend CLI emits its own line-delimited JSON schema. Adapters translate
one line into one StreamEvent; everything above this module is
backend-agnostic. Every field is optional because a single line usually
carries only one kind of signal.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by a backend (or summed across sections)."""

    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(self.input + other.input, self.output + other.output)


@dataclass(frozen=True)
class StreamEvent:
    text_delta: str | None = None      # token-level text, appended
    full_text: str | None = None       # complete message, replaces deltas
    tool_name: str | None = None       # tool(s) being invoked
    tool_hint: str | None = None       # file path, query or command for display
    write_content: str | None = None   # file-write tool payload (fallback output)
    done: bool = False
    usage: TokenUsage | None = None
    cost: float | None = None          # USD
    turns: int | None = None

    @property
    def is_empty(self) -> bool:
        return self == EMPTY_EVENT


EMPTY_EVENT = StreamEvent()


def to_int(value: object) -> int:
    """Coerce a JSON usage counter to int; anything unusable counts as zero."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def first_present(obj: dict, *keys: str) -> object:
    """Return the value of the first key in *keys* that is set on *obj*."""
    for key in keys:
        value = obj.get(key)
        if value is not None:
            return value
    return None


def optional_float(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def optional_int(value: object) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value
