"""Shared fixtures: a scriptable fake backend CLI and cache stores in tmp_path."""

import dataclasses
import sys
import textwrap
from pathlib import Path

import pytest

from skillwriter.backends import MODEL_REGISTRY, ModelConfig
from skillwriter.cache import CacheStore

# The fake backend speaks the claude stream-json dialect. Its prompt (stdin)
# is a list of directives, one per line; ``\n`` inside an argument is a
# newline.
#
#   SAY <text>            assistant message with full text
#   DELTA <text>          token-level text delta
#   TOOL_WRITE <text>     Write tool_use whose content is <text>
#   WRITE <file> <text>   write <text> to <file> in the working directory
#   LINK <name> <target>  create symlink <name> pointing at <target>
#   MKDIR <name>          create directory <name>
#   USAGE <in> <out> <$>  result event with usage and cost
#   TAIL <text>           assistant message with no trailing newline
#   STDERR <text>         write to stderr
#   SLEEP <seconds>
#   EXIT <code>
FAKE_BACKEND = textwrap.dedent('''\
    import json
    import os
    import sys
    import time

    prompt = sys.stdin.read()

    log = os.environ.get("FAKE_BACKEND_LOG")
    if log:
        with open(log, "a") as f:
            f.write(prompt.splitlines()[0] + "\\n")


    def emit(obj, newline=True):
        sys.stdout.write(json.dumps(obj) + ("\\n" if newline else ""))
        sys.stdout.flush()


    def assistant_text(text):
        return {"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}}


    for line in prompt.splitlines():
        cmd, _, arg = line.partition(" ")
        arg = arg.replace("\\\\n", "\\n")
        if cmd == "SAY":
            emit(assistant_text(arg))
        elif cmd == "DELTA":
            emit({"type": "stream_event", "event": {
                "type": "content_block_delta",
                "delta": {"type": "text_delta", "text": arg},
            }})
        elif cmd == "TOOL_WRITE":
            emit({"type": "assistant", "message": {"content": [{
                "type": "tool_use",
                "name": "Write",
                "input": {"file_path": os.path.join(os.getcwd(), "_OUT.md"), "content": arg},
            }]}})
        elif cmd == "WRITE":
            name, _, text = arg.partition(" ")
            with open(name, "w") as f:
                f.write(text)
        elif cmd == "LINK":
            name, _, target = arg.partition(" ")
            os.symlink(target, name)
        elif cmd == "MKDIR":
            os.mkdir(arg)
        elif cmd == "USAGE":
            tokens_in, tokens_out, cost = arg.split()
            emit({
                "type": "result",
                "usage": {"input_tokens": int(tokens_in), "output_tokens": int(tokens_out)},
                "total_cost_usd": float(cost),
                "num_turns": 1,
            })
        elif cmd == "TAIL":
            emit(assistant_text(arg), newline=False)
        elif cmd == "STDERR":
            sys.stderr.write(arg)
            sys.stderr.flush()
        elif cmd == "SLEEP":
            time.sleep(float(arg))
        elif cmd == "EXIT":
            sys.exit(int(arg))
''')


def write_fake_backend(directory: Path) -> Path:
    script = directory / "fake-backend"
    script.write_text(f"#!{sys.executable}\n{FAKE_BACKEND}")
    script.chmod(0o755)
    return script


@pytest.fixture
def fake_model(tmp_path) -> ModelConfig:
    """The ``sonnet`` registry entry, pointed at the fake backend script."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return dataclasses.replace(MODEL_REGISTRY["sonnet"], command=str(write_fake_backend(bin_dir)))


@pytest.fixture
def spawn_log(tmp_path, monkeypatch) -> Path:
    """File the fake backend appends the first prompt line to on every spawn."""
    path = tmp_path / "spawns.log"
    monkeypatch.setenv("FAKE_BACKEND_LOG", str(path))
    return path


@pytest.fixture
def skill_dir(tmp_path) -> Path:
    path = tmp_path / "skills" / "vue"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def cache_store(tmp_path) -> CacheStore:
    return CacheStore.at(tmp_path / "cache")


def spawned_prompts(log: Path) -> list[str]:
    if not log.exists():
        return []
    return log.read_text().splitlines()


def section_body(title: str, *bullets: str) -> str:
    """A small section in directive form (escaped newlines)."""
    lines = [f"## {title}", ""] + [f"- {b}" for b in bullets]
    return "\\n".join(lines)


def section_text(title: str, *bullets: str) -> str:
    return section_body(title, *bullets).replace("\\n", "\n")

