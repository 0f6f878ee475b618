"""Tests for work dir preparation, quarantine and debug artifacts."""

import os

import pytest

from skillwriter.sections import Section
from skillwriter.workspace import (
    prepare_work_dir,
    quarantine_work_dir,
    resolve_reference_dirs,
    shorten_path,
    snapshot_entries,
    write_debug_logs,
    write_prompt_dump,
)


@pytest.fixture
def work_dir(skill_dir):
    return prepare_work_dir(skill_dir)


# ---------------------------------------------------------------------------
# Quarantine
# ---------------------------------------------------------------------------


class TestQuarantine:
    def test_keeps_expected_entries_and_removes_the_rest(self, work_dir):
        for name in ("_LLM_GAPS.md", "_DOC_MAP.md", "PROMPT_api.md", "randomFile.txt", "notes.md"):
            (work_dir / name).write_text("x")
        (work_dir / "logs").mkdir()
        (work_dir / "logs" / "API.jsonl").write_text("{}")
        (work_dir / "payload").mkdir()
        (work_dir / "payload" / "run.sh").write_text("rm -rf /")

        removed = quarantine_work_dir(work_dir, "_LLM_GAPS.md")

        assert removed == ["notes.md", "payload", "randomFile.txt"]
        assert sorted(os.listdir(work_dir)) == ["PROMPT_api.md", "_DOC_MAP.md", "_LLM_GAPS.md", "logs"]
        assert (work_dir / "logs" / "API.jsonl").exists()

    def test_pre_existing_entries_survive(self, work_dir):
        (work_dir / "docs").mkdir()
        (work_dir / "package.json").write_text("{}")
        pre_existing = snapshot_entries(work_dir)
        (work_dir / "dropped.txt").write_text("x")

        removed = quarantine_work_dir(work_dir, "_DOC_MAP.md", pre_existing)

        assert removed == ["dropped.txt"]
        assert (work_dir / "docs").is_dir()
        assert (work_dir / "package.json").exists()

    def test_symlinks_unlinked_not_followed(self, work_dir, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "keep.txt").write_text("precious")
        (work_dir / "link").symlink_to(outside, target_is_directory=True)
        (work_dir / "filelink").symlink_to(outside / "keep.txt")

        removed = quarantine_work_dir(work_dir, "_DOC_MAP.md")

        assert removed == ["filelink", "link"]
        assert (outside / "keep.txt").read_text() == "precious"

    def test_missing_work_dir(self, tmp_path):
        assert quarantine_work_dir(tmp_path / "nope", "_DOC_MAP.md") == []


# ---------------------------------------------------------------------------
# Preparation and reference dirs
# ---------------------------------------------------------------------------


class TestWorkDir:
    def test_prepare_is_idempotent(self, skill_dir):
        first = prepare_work_dir(skill_dir)
        second = prepare_work_dir(skill_dir)
        assert first == second == skill_dir / ".skilld"
        assert first.is_dir()

    def test_snapshot_of_missing_dir_is_empty(self, tmp_path):
        assert snapshot_entries(tmp_path / "missing") == frozenset()

    def test_reference_dirs_are_resolved_symlink_targets(self, work_dir, tmp_path):
        docs = tmp_path / "store" / "vue@3.5.0" / "docs"
        docs.mkdir(parents=True)
        (work_dir / "docs").symlink_to(docs, target_is_directory=True)
        (work_dir / "broken").symlink_to(tmp_path / "gone")
        (work_dir / "plain").mkdir()

        assert resolve_reference_dirs(work_dir) == [docs.resolve()]


# ---------------------------------------------------------------------------
# Debug artifacts
# ---------------------------------------------------------------------------


class TestArtifacts:
    def test_prompt_dump(self, work_dir):
        path = write_prompt_dump(work_dir, Section.BEST_PRACTICES, "the prompt")
        assert path.name == "PROMPT_best-practices.md"
        assert path.read_text() == "the prompt"

    def test_debug_logs_only_write_what_exists(self, work_dir):
        logs = write_debug_logs(work_dir, Section.API_CHANGES, ['{"a": 1}', '{"b": 2}'], "", "")

        assert sorted(p.name for p in logs.iterdir()) == ["API_CHANGES.jsonl"]
        assert (logs / "API_CHANGES.jsonl").read_text() == '{"a": 1}\n{"b": 2}\n'


class TestShortenPath:
    @pytest.mark.parametrize("hint, expected", [
        ("/home/u/skills/vue/.skilld/docs/api.md", "docs/api.md"),
        ("/a/b/c/d.md", ".../c/d.md"),
        ("README.md", "README.md"),
        ("skilld search hooks", "skilld search hooks"),
    ])
    def test_shorten(self, hint, expected):
        assert shorten_path(hint) == expected
