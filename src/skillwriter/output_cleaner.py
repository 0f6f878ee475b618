"""Post-processing for a section's raw backend output."""

from __future__ import annotations

import re
from dataclasses import dataclass

from skillwriter.sanitize import sanitize_markdown
from skillwriter.sections import SECTION_MAX_LINES, Section

_WRAPPER_OPEN_RE = re.compile(r"\A```(?:markdown|md)[ \t]*\n")
_WRAPPER_CLOSE_RE = re.compile(r"\n?```[ \t]*\Z")

_FRONTMATTER_OPEN_RE = re.compile(r"\A-{3,}\n")
_FRONTMATTER_CLOSE_RE = re.compile(r"\n-{3,}")

# ``## heading``, warning and best-practice bullets
SECTION_MARKER_RE = re.compile(r"^(##\s|⚠️|✅)", re.MULTILINE)

_CODE_PREAMBLE_RE = re.compile(
    r"\b(?:function|const |let |var |export |return |import |async |class )\b"
)

MIN_LINES = 3


@dataclass(frozen=True)
class ValidationWarning:
    section: Section
    warning: str

    def __str__(self) -> str:
        return f"{self.section.value}: {self.warning}"


def _unwrap_fence(text: str) -> str:
    opener = _WRAPPER_OPEN_RE.match(text)
    if not opener:
        return text
    body = text[opener.end():]
    closer = _WRAPPER_CLOSE_RE.search(body)
    if not closer:
        return text
    return body[:closer.start()]


def _strip_frontmatter(text: str) -> str:
    opener = _FRONTMATTER_OPEN_RE.match(text)
    if not opener:
        return text
    rest = text[opener.end():]
    closer = _FRONTMATTER_CLOSE_RE.search(rest)
    if closer:
        return rest[closer.end():].strip()
    # A lone leading rule, not frontmatter
    return rest.strip()


def _strip_code_preamble(text: str) -> str:
    marker = SECTION_MARKER_RE.search(text)
    if not marker or marker.start() == 0:
        return text
    if _CODE_PREAMBLE_RE.search(text[:marker.start()]):
        return text[marker.start():].strip()
    return text


def clean_section_output(content: str) -> str:
    """Strip wrapper fences, frontmatter and source-code preambles, then sanitize."""
    cleaned = _unwrap_fence(content.strip()).strip()
    cleaned = _strip_frontmatter(cleaned)
    cleaned = _strip_code_preamble(cleaned)
    return sanitize_markdown(cleaned)


def validate_section_output(content: str, section: Section) -> list[ValidationWarning]:
    """Length heuristics. Advisory only; never blocks output."""
    warnings: list[ValidationWarning] = []
    lines = len(content.split("\n"))
    max_lines = SECTION_MAX_LINES.get(section)

    if max_lines and lines > max_lines * 1.5:
        warnings.append(ValidationWarning(section, f"Output {lines} lines exceeds {max_lines} max by >50%"))

    if lines < MIN_LINES:
        warnings.append(ValidationWarning(section, f"Output only {lines} lines, likely too sparse"))

    return warnings


def looks_like_section_content(text: str) -> bool:
    return bool(SECTION_MARKER_RE.search(text))
