"""
Section taxonomy and working-directory conventions.

Single source of truth for which sections exist, which file each one writes
inside the shared working directory, the order they are merged in, and
which names in that directory are debug artifacts rather than debris.
"""

from __future__ import annotations

from enum import Enum


class Section(str, Enum):
    """One category of generated content. Unit of caching, parallelism and failure."""

    LLM_GAPS = "llm-gaps"
    API_CHANGES = "api-changes"
    BEST_PRACTICES = "best-practices"
    API = "api"
    CUSTOM = "custom"

    def __str__(self) -> str:
        return self.value


# Output file per section (inside the work dir)
SECTION_OUTPUT_FILES: dict[Section, str] = {
    Section.LLM_GAPS: "_LLM_GAPS.md",
    Section.API_CHANGES: "_API_CHANGES.md",
    Section.BEST_PRACTICES: "_BEST_PRACTICES.md",
    Section.API: "_DOC_MAP.md",
    Section.CUSTOM: "_CUSTOM.md",
}

# Merge order for the final document body. Arrival order never matters.
SECTION_MERGE_ORDER: tuple[Section, ...] = (
    Section.LLM_GAPS,
    Section.API_CHANGES,
    Section.BEST_PRACTICES,
    Section.API,
    Section.CUSTOM,
)

# Soft line ceilings, roughly twice the prompt guidance so only egregious
# overruns are flagged.
SECTION_MAX_LINES: dict[Section, int] = {
    Section.LLM_GAPS: 160,
    Section.API_CHANGES: 160,
    Section.BEST_PRACTICES: 300,
    Section.API: 160,
    Section.CUSTOM: 160,
}

# Name of the shared work dir inside a skill directory
WORK_SUBDIR = ".skilld"

# Debug artifacts that survive quarantine
PROMPT_DUMP_PREFIX = "PROMPT_"
LOGS_DIRNAME = "logs"


def prompt_dump_name(section: Section) -> str:
    return f"{PROMPT_DUMP_PREFIX}{section.value}.md"


def log_basename(section: Section) -> str:
    """``best-practices`` → ``BEST_PRACTICES``"""
    return section.value.upper().replace("-", "_")


def parse_section(value: str) -> Section:
    """Parse a section id, raising ValueError with the valid choices."""
    try:
        return Section(value)
    except ValueError:
        valid = ", ".join(s.value for s in Section)
        raise ValueError(f"Unknown section '{value}'. Valid sections: {valid}") from None
