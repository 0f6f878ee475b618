"""
Markdown sanitizer for prompt injection defense.

Strips injection vectors from untrusted markdown before it reaches
agent-readable files (cached sections, merged documents).

Threat model: agent instruction injection, not browser XSS. Markdown is
consumed as text by AI agents, so a lightweight regex pass is enough.

Most layers only run outside fenced code blocks, where legitimate examples
may contain ``<script setup>`` or ``Array<string>``. Fence tracking is a
line-oriented scanner; an unterminated fence is treated as non-code so a
malformed fence cannot shield a payload.
"""

from __future__ import annotations

import re
from typing import Callable

# Zero-width and invisible formatting characters used to hide text from human review
_ZERO_WIDTH_RE = re.compile("[\u200b\u200c\ufeff\u2060\u200d\u061c\u180e\u200e\u200f\u2028\u2029]")

_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)

# Never legitimate in any context; pure injection vectors
AGENT_DIRECTIVE_TAGS = (
    "system",
    "instructions",
    "override",
    "prompt",
    "context",
    "role",
    "user-prompt",
    "assistant",
    "tool-use",
    "tool-result",
    "system-prompt",
    "human",
    "admin",
)

# May appear legitimately in code examples, so only stripped outside fences
DANGEROUS_HTML_TAGS = (
    "script",
    "iframe",
    "style",
    "meta",
    "object",
    "embed",
    "form",
)

_ENTITY_REPLACEMENTS = (
    (re.compile(r"&lt;", re.IGNORECASE), "<"),
    (re.compile(r"&gt;", re.IGNORECASE), ">"),
    (re.compile(r"&#0*60;"), "<"),
    (re.compile(r"&#0*62;"), ">"),
    (re.compile(r"&#x0*3c;", re.IGNORECASE), "<"),
    (re.compile(r"&#x0*3e;", re.IGNORECASE), ">"),
)

# ![alt](https://...) can exfiltrate data via query params
_EXTERNAL_IMAGE_RE = re.compile(r"!\[([^\]]*)\]\(https?://[^)]+\)", re.IGNORECASE)

# [text](https://...); relative links and anchors are kept
_EXTERNAL_LINK_RE = re.compile(r"\[([^\]]*)\]\((https?://[^)]+)\)", re.IGNORECASE)

_DANGEROUS_PROTOCOL_RE = re.compile(
    r"!?\[([^\]]*)\]\(\s*(javascript|data|vbscript|file)\s*:[^)]*\)", re.IGNORECASE,
)


def _encoded(word: str) -> str:
    """Regex matching *word* with any letter optionally percent-encoded."""
    parts = []
    for ch in word:
        lower, upper = ord(ch.lower()), ord(ch.upper())
        parts.append(f"(?:{ch}|%{lower:02x}|%{upper:02x})")
    return "".join(parts)


_DANGEROUS_PROTOCOL_ENCODED_RE = re.compile(
    r"!?\[([^\]]*)\]\(\s*(?:"
    + "|".join(_encoded(w) for w in ("javascript", "data", "vbscript"))
    + r")\s*:[^)]*\)",
    re.IGNORECASE,
)

_DIRECTIVE_LINE_RE = re.compile(
    r"^[ \t]*(SYSTEM|OVERRIDE|INSTRUCTION|NOTE TO AI|IGNORE PREVIOUS|IGNORE ALL PREVIOUS"
    r"|DISREGARD|FORGET ALL|NEW INSTRUCTIONS?|IMPORTANT SYSTEM|ADMIN OVERRIDE)\s*[:>].*",
    re.IGNORECASE | re.MULTILINE,
)

# 100+ chars of pure base64 alphabet on a single line
_BASE64_BLOB_RE = re.compile(r"^[A-Z0-9+/=]{100,}$", re.IGNORECASE | re.MULTILINE)

# 4+ consecutive \uXXXX sequences
_UNICODE_ESCAPE_SPAM_RE = re.compile(r"(\\u[0-9A-Fa-f]{4}){4,}")

_FENCE_OPEN_RE = re.compile(r"^(`{3,}|~{3,})")
_FENCE_CLOSE_RE = re.compile(r"^(`{3,}|~{3,})\s*$")


def _decode_angle_bracket_entities(text: str) -> str:
    """Decode only < and > entities so tag stripping catches encoded variants."""
    for pattern, replacement in _ENTITY_REPLACEMENTS:
        text = pattern.sub(replacement, text)
    return text


def _tag_group(tags: tuple[str, ...]) -> str:
    return "|".join(re.escape(t) for t in tags)


def _strip_paired_tags(text: str, tags: tuple[str, ...]) -> str:
    """Remove ``<tag ...>content</tag>`` including the content."""
    paired = re.compile(rf"<({_tag_group(tags)})(\s[^>]*)?>(.*?)</\1>", re.IGNORECASE | re.DOTALL)
    return paired.sub("", text)


def _strip_tag_markers(text: str, tags: tuple[str, ...]) -> str:
    """Remove standalone open, close and self-closing tags, keeping surrounding text."""
    standalone = re.compile(rf"</?({_tag_group(tags)})(\s[^>]*)?/?>", re.IGNORECASE)
    return standalone.sub("", text)


def strip_tags(text: str, tags: tuple[str, ...]) -> str:
    if not tags:
        return text
    return _strip_tag_markers(_strip_paired_tags(text, tags), tags)


def process_outside_code_blocks(content: str, fn: Callable[[str], str]) -> str:
    """Apply *fn* to every region of *content* that is not a fenced code block.

    A fence closes only on a line holding the same fence character repeated at
    least as many times as the opener. Unclosed fences are handed to *fn* as
    well.
    """
    result: list[str] = []
    non_code: list[str] = []
    code: list[str] = []
    in_code = False
    fence_char = ""
    fence_len = 0

    def flush_non_code() -> None:
        if non_code:
            result.append(fn("\n".join(non_code)))
            non_code.clear()

    for line in content.split("\n"):
        trimmed = line.lstrip()
        if not in_code:
            match = _FENCE_OPEN_RE.match(trimmed)
            if match:
                flush_non_code()
                in_code = True
                fence_char = match.group(1)[0]
                fence_len = len(match.group(1))
                code = [line]
                continue
            non_code.append(line)
        else:
            match = _FENCE_CLOSE_RE.match(trimmed)
            if match and match.group(1)[0] == fence_char and len(match.group(1)) >= fence_len:
                result.append("\n".join(code))
                result.append(line)
                code = []
                in_code = False
                continue
            code.append(line)

    flush_non_code()

    if in_code and code:
        result.append(fn("\n".join(code)))

    return "\n".join(result)


def _sanitize_prose(text: str) -> str:
    text = _decode_angle_bracket_entities(text)
    text = strip_tags(text, AGENT_DIRECTIVE_TAGS + DANGEROUS_HTML_TAGS)
    text = _EXTERNAL_IMAGE_RE.sub("", text)
    text = _EXTERNAL_LINK_RE.sub(r"\1", text)
    text = _DANGEROUS_PROTOCOL_RE.sub("", text)
    text = _DANGEROUS_PROTOCOL_ENCODED_RE.sub("", text)
    text = _DIRECTIVE_LINE_RE.sub("", text)
    text = _BASE64_BLOB_RE.sub("", text)
    text = _UNICODE_ESCAPE_SPAM_RE.sub("", text)
    return text


def sanitize_markdown(content: str) -> str:
    """Strip prompt injection vectors from untrusted markdown.

    Layers:
      1. zero-width characters (global)
      2. HTML comments (global)
      3. outside fences: entity-decoded directive and dangerous HTML tags
         with their content, external images, external links (kept as
         text), dangerous URI schemes, directive lines, encoded payloads
      4. agent directive tag markers (global, code text inside is kept)
    """
    if not content:
        return content

    result = _ZERO_WIDTH_RE.sub("", content)
    result = _HTML_COMMENT_RE.sub("", result)
    result = process_outside_code_blocks(result, _sanitize_prose)
    result = _strip_tag_markers(result, AGENT_DIRECTIVE_TAGS)
    return result


# --- Markdown repair ---

_HEADING_NO_SPACE_RE = re.compile(r"^(#{1,6})([^\s#])", re.MULTILINE)
_EXCESSIVE_BLANKS_RE = re.compile(r"\n{4,}")
_TRAILING_WHITESPACE_RE = re.compile(r"[ \t]+$", re.MULTILINE)
_FENCE_OPEN_WITH_LANG_RE = re.compile(r"^(`{3,}|~{3,})\S")


def _close_unclosed_code_blocks(content: str) -> str:
    result: list[str] = []
    in_code = False
    fence = ""

    for line in content.split("\n"):
        trimmed = line.lstrip()
        if not in_code:
            match = _FENCE_OPEN_RE.match(trimmed)
            if match:
                in_code = True
                fence = match.group(1)
        else:
            match = _FENCE_CLOSE_RE.match(trimmed)
            if match and match.group(1)[0] == fence[0] and len(match.group(1)) >= len(fence):
                in_code = False
                fence = ""
            else:
                # A new opener with a language tag means the previous block was never closed
                opener = _FENCE_OPEN_WITH_LANG_RE.match(trimmed)
                if opener and opener.group(1)[0] == fence[0] and len(opener.group(1)) == len(fence):
                    result.append(fence)
        result.append(line)

    if in_code:
        if result and result[-1] != "":
            result.append("")
        result.append(fence)

    return "\n".join(result)


def _close_inline_code(line: str) -> str:
    i = 0
    while i < len(line):
        if line[i] != "`":
            i += 1
            continue
        start = i
        while i < len(line) and line[i] == "`":
            i += 1
        run = i - start
        j = i
        found = False
        while j < len(line):
            if line[j] == "`":
                close_start = j
                while j < len(line) and line[j] == "`":
                    j += 1
                if j - close_start == run:
                    found = True
                    i = j
                    break
            else:
                j += 1
        if not found:
            line = line + "`" * run
            i = len(line)
    return line


def _close_unclosed_inline_code(content: str) -> str:
    lines = []
    in_fence = False
    fence_char = ""
    fence_len = 0

    for line in content.split("\n"):
        trimmed = line.lstrip()
        if not in_fence:
            match = _FENCE_OPEN_RE.match(trimmed)
            if match:
                in_fence = True
                fence_char = match.group(1)[0]
                fence_len = len(match.group(1))
                lines.append(line)
                continue
            lines.append(_close_inline_code(line))
        else:
            match = _FENCE_CLOSE_RE.match(trimmed)
            if match and match.group(1)[0] == fence_char and len(match.group(1)) >= fence_len:
                in_fence = False
            lines.append(line)

    return "\n".join(lines)


def repair_markdown(content: str) -> str:
    """Repair broken markdown syntax.

    Closes unclosed fences and inline code spans, adds the missing space in
    ``##Heading``, collapses runs of blank lines and strips trailing
    whitespace.
    """
    if not content:
        return content

    result = _close_unclosed_code_blocks(content)
    result = _close_unclosed_inline_code(result)
    result = process_outside_code_blocks(result, lambda t: _HEADING_NO_SPACE_RE.sub(r"\1 \2", t))
    result = _EXCESSIVE_BLANKS_RE.sub("\n\n\n", result)
    result = _TRAILING_WHITESPACE_RE.sub("", result)
    return result
