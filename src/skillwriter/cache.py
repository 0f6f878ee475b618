"""
Two-tier result cache for generated sections.

Tier 1 (reference cache) is keyed by package, version and output file and is
shared by every project that documents the same package version:

    <root>/references/<pkg>@<version>/sections/_BEST_PRACTICES.md

Tier 2 (prompt cache) is content-addressed by model, section and normalized
prompt, and expires after a maximum age:

    <root>/llm-cache/<hash16>.json   {"text", "model", "section", "timestamp"}

Every read failure (missing file, permission problem, corrupt JSON) is a
cache miss. Nothing in this module raises into a generation run except
write failures, which callers log and ignore.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from skillwriter.sections import Section

logger = logging.getLogger("skillwriter.cache")

DIR_MODE = 0o700
FILE_MODE = 0o600

REFERENCES_DIRNAME = "references"
PROMPT_CACHE_DIRNAME = "llm-cache"

DEFAULT_MAX_AGE_SECONDS = 7 * 24 * 60 * 60

# /home/u/proj/.claude/skills/vue → <SKILL_DIR>
_SKILL_DIR_RE = re.compile(r"/[^\s`]*\.(?:claude|codex|gemini)/skills/[^\s/`]+")


def _write_private(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True, mode=DIR_MODE)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)
    # O_CREAT mode is ignored for files that already existed
    os.chmod(path, FILE_MODE)


# ---------------------------------------------------------------------------
# Tier 1: reference cache
# ---------------------------------------------------------------------------

class ReferenceCache:
    """Cross-project section cache keyed by ``(package, version, output file)``."""

    def __init__(self, root: Path):
        self.root = Path(root) / REFERENCES_DIRNAME

    def package_dir(self, package: str, version: str) -> Path:
        return self.root / f"{package}@{version}"

    def section_path(self, package: str, version: str, file: str) -> Path:
        return self.package_dir(package, version) / "sections" / file

    def read(self, package: str, version: str, file: str) -> Optional[str]:
        path = self.section_path(package, version, file)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Unreadable reference cache entry %s: %s", path, e)
            return None

    def write_sections(self, package: str, version: str, sections: Iterable[tuple[str, str]]) -> None:
        """Write ``(output file, content)`` pairs for one package version."""
        for file, content in sections:
            _write_private(self.section_path(package, version, file), content)

    def clear(self, package: str, version: str) -> bool:
        """Remove one package version's cache. Returns False if there was none."""
        path = self.package_dir(package, version)
        if not path.exists():
            return False
        shutil.rmtree(path)
        return True


# ---------------------------------------------------------------------------
# Tier 2: prompt-hash cache
# ---------------------------------------------------------------------------

class CacheEntry(BaseModel):
    """Persisted prompt-cache record. ``timestamp`` is epoch milliseconds."""

    model_config = ConfigDict(protected_namespaces=())

    text: str
    model: str
    section: str
    timestamp: int


def normalize_prompt_for_hash(prompt: str) -> str:
    """Replace project-specific skill dir paths so the hash is portable."""
    return _SKILL_DIR_RE.sub("<SKILL_DIR>", prompt)


def _section_id(section: Section | str) -> str:
    return section.value if isinstance(section, Section) else section


def hash_prompt(prompt: str, model: str, section: Section | str) -> str:
    key = f"invoke:{model}:{_section_id(section)}:{normalize_prompt_for_hash(prompt)}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]


class PromptCache:
    """Content-addressed cache of section outputs with age-based expiry."""

    def __init__(
        self,
        root: Path,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.root = Path(root) / PROMPT_CACHE_DIRNAME
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def entry_path(self, prompt: str, model: str, section: Section | str) -> Path:
        return self.root / f"{hash_prompt(prompt, model, section)}.json"

    def _load(self, path: Path) -> Optional[CacheEntry]:
        try:
            return CacheEntry.model_validate_json(path.read_bytes())
        except FileNotFoundError:
            return None
        except (OSError, ValidationError) as e:
            logger.debug("Ignoring unreadable prompt cache entry %s: %s", path.name, e)
            return None

    def _expired(self, entry: CacheEntry) -> bool:
        return self._now_ms() - entry.timestamp > self.max_age_seconds * 1000

    def get(self, prompt: str, model: str, section: Section | str) -> Optional[str]:
        entry = self._load(self.entry_path(prompt, model, section))
        if entry is None or self._expired(entry):
            return None
        return entry.text

    def set(self, prompt: str, model: str, section: Section | str, text: str) -> Path:
        entry = CacheEntry(text=text, model=model, section=_section_id(section), timestamp=self._now_ms())
        path = self.entry_path(prompt, model, section)
        _write_private(path, entry.model_dump_json())
        return path

    def clean_expired(self) -> tuple[int, int]:
        """Delete expired and corrupt entries. Returns ``(removed, freed_bytes)``."""
        removed = 0
        freed = 0
        try:
            paths = sorted(self.root.iterdir())
        except FileNotFoundError:
            return removed, freed

        for path in paths:
            if not path.is_file():
                continue
            entry = self._load(path)
            if entry is not None and not self._expired(entry):
                continue
            try:
                size = path.stat().st_size
                path.unlink()
            except FileNotFoundError:
                continue
            removed += 1
            freed += size

        if removed:
            logger.info("Removed %d prompt cache entries (%d bytes)", removed, freed)
        return removed, freed


@dataclass
class CacheStore:
    """The cache tiers handed to a scheduler. Either tier may be absent."""

    reference: Optional[ReferenceCache] = None
    prompts: Optional[PromptCache] = None

    @classmethod
    def at(cls, root: Path, max_age_days: float = 7) -> "CacheStore":
        return cls(
            reference=ReferenceCache(root),
            prompts=PromptCache(root, max_age_seconds=max_age_days * 24 * 60 * 60),
        )

    @classmethod
    def from_settings(cls, app_settings=None) -> "CacheStore":
        if app_settings is None:
            from skillwriter.config import settings as app_settings
        return cls.at(app_settings.cache_dir, app_settings.prompt_cache_max_age_days)
