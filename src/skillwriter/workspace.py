"""
Shared work directory handling.

All sections of a run write into one directory (``<skill_dir>/.skilld``).
Backends are untrusted: a backend that follows instructions injected into
the material it summarizes may leave arbitrary files behind. Quarantine
removes every entry that is not an expected section output, a debug
artifact, or something that existed before the run started.

Responsibilities:
- Create the work dir and snapshot what already lives there
- Resolve symlinked reference dirs into extra read dirs for backends
- Persist prompt dumps and debug logs
- Quarantine unexpected entries after each backend exits
- Read and write section outputs without following symlinks
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
from pathlib import Path
from typing import Iterable, Optional

from skillwriter.sections import (
    LOGS_DIRNAME,
    PROMPT_DUMP_PREFIX,
    SECTION_OUTPUT_FILES,
    WORK_SUBDIR,
    Section,
    log_basename,
    prompt_dump_name,
)

logger = logging.getLogger("skillwriter.workspace")

_EXPECTED_OUTPUTS = frozenset(SECTION_OUTPUT_FILES.values())

_O_NOFOLLOW = getattr(os, "O_NOFOLLOW", 0)


def work_dir_path(skill_dir: str | os.PathLike) -> Path:
    return Path(skill_dir) / WORK_SUBDIR


def prepare_work_dir(skill_dir: str | os.PathLike) -> Path:
    """Create ``<skill_dir>/.skilld`` if needed and return it."""
    work_dir = work_dir_path(skill_dir)
    work_dir.mkdir(parents=True, exist_ok=True)
    return work_dir


def snapshot_entries(work_dir: Path) -> frozenset[str]:
    """Names present in *work_dir* right now; empty if it does not exist."""
    try:
        return frozenset(os.listdir(work_dir))
    except FileNotFoundError:
        return frozenset()


def resolve_reference_dirs(work_dir: Path) -> list[Path]:
    """Real paths of symlinks directly inside *work_dir*.

    Reference material (package docs, sources) is linked into the work dir;
    backends that do not follow symlinks need the targets as read dirs.
    """
    dirs: list[Path] = []
    try:
        entries = sorted(os.scandir(work_dir), key=lambda e: e.name)
    except FileNotFoundError:
        return dirs
    for entry in entries:
        if not entry.is_symlink():
            continue
        try:
            target = Path(os.path.realpath(entry.path))
        except OSError:
            continue
        if target.exists():
            dirs.append(target)
    return dirs


def is_kept(name: str, own_output: str, pre_existing: Iterable[str]) -> bool:
    return (
        name == own_output
        or name in _EXPECTED_OUTPUTS
        or name.startswith(PROMPT_DUMP_PREFIX)
        or name == LOGS_DIRNAME
        or name in pre_existing
    )


def remove_entry(path: Path) -> None:
    """Unlink a file or symlink, or delete a real directory tree."""
    if path.is_symlink() or not path.is_dir():
        path.unlink()
    else:
        shutil.rmtree(path)


def read_output_file(path: Path) -> Optional[str]:
    """Read a section output file without following symlinks.

    Returns None when nothing usable is there. A symlink, directory or
    other non-regular entry under the output name is removed.
    """
    try:
        mode = path.lstat().st_mode
    except FileNotFoundError:
        return None
    if not stat.S_ISREG(mode):
        logger.warning("Removing non-regular entry at %s", path)
        try:
            remove_entry(path)
        except FileNotFoundError:
            pass
        return None
    try:
        fd = os.open(path, os.O_RDONLY | _O_NOFOLLOW)
    except FileNotFoundError:
        return None
    with os.fdopen(fd, "rb") as f:
        return f.read().decode("utf-8", errors="replace")


def write_output_file(path: Path, content: str) -> None:
    """Replace whatever sits at *path* with a fresh regular file."""
    try:
        remove_entry(path)
    except FileNotFoundError:
        pass
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL | _O_NOFOLLOW, 0o644)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(content)


def quarantine_work_dir(
    work_dir: Path, own_output: str, pre_existing: Iterable[str] = (),
) -> list[str]:
    """Delete unexpected entries from *work_dir*. Returns the removed names.

    Reads the live directory listing every time; sibling sections may be
    writing concurrently. Symlinks are unlinked, never followed.
    """
    keep = frozenset(pre_existing)
    removed: list[str] = []
    try:
        names = os.listdir(work_dir)
    except FileNotFoundError:
        return removed

    for name in sorted(names):
        if is_kept(name, own_output, keep):
            continue
        path = work_dir / name
        try:
            remove_entry(path)
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("Could not quarantine %s: %s", path, e)
            continue
        removed.append(name)

    if removed:
        logger.warning("Quarantined unexpected entries in %s: %s", work_dir, ", ".join(removed))
    return removed


def write_prompt_dump(work_dir: Path, section: Section, prompt: str) -> Path:
    path = work_dir / prompt_dump_name(section)
    path.write_text(prompt, encoding="utf-8")
    return path


def write_debug_logs(
    work_dir: Path,
    section: Section,
    raw_lines: list[str],
    raw_text: str,
    stderr: str,
) -> Path:
    """Write ``logs/<SECTION>.jsonl``, ``.md`` and ``.stderr.log``. Returns the logs dir."""
    logs_dir = work_dir / LOGS_DIRNAME
    logs_dir.mkdir(parents=True, exist_ok=True)
    base = log_basename(section)

    (logs_dir / f"{base}.jsonl").write_text(
        "\n".join(raw_lines) + ("\n" if raw_lines else ""), encoding="utf-8"
    )
    if raw_text:
        (logs_dir / f"{base}.md").write_text(raw_text, encoding="utf-8")
    if stderr:
        (logs_dir / f"{base}.stderr.log").write_text(stderr, encoding="utf-8")
    return logs_dir


def shorten_path(hint: str) -> str:
    """Compact a tool hint for progress display.

    ``/x/y/.skilld/docs/api.md`` → ``docs/api.md``;
    ``/a/b/c/d.md`` → ``.../c/d.md``.
    """
    marker = f"{WORK_SUBDIR}/"
    idx = hint.find(marker)
    if idx != -1:
        return hint[idx + len(marker):]
    parts = hint.split("/")
    if len(parts) > 2:
        return ".../" + "/".join(parts[-2:])
    return hint
