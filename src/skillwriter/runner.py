"""
Process runner: one backend CLI child process per section.

Lifecycle of a single GenerationTask:

    Starting    remove the stale output file, dump the prompt, spawn
    Streaming   write the prompt to stdin and close it; parse stdout lines
    Draining    the process exit is fed as a final chunk through the same
                line buffer, so a last line without a newline still counts
    Finalizing  quarantine the work dir, resolve raw content
                (output file > last write-tool payload > streamed text),
                clean, sanitize, validate

Every path ends in exactly one SectionResult. Spawn errors, timeouts and
non-zero exits are values on the result, not exceptions. Nothing here
retries; retry policy belongs to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Literal, Optional

from skillwriter.backends import ModelConfig
from skillwriter.events import StreamEvent, TokenUsage
from skillwriter.exceptions import ErrorCode
from skillwriter.logging_config import section_var
from skillwriter.output_cleaner import (
    ValidationWarning,
    clean_section_output,
    looks_like_section_content,
    validate_section_output,
)
from skillwriter.sections import Section
from skillwriter.workspace import (
    quarantine_work_dir,
    read_output_file,
    remove_entry,
    resolve_reference_dirs,
    shorten_path,
    write_debug_logs,
    write_output_file,
    write_prompt_dump,
)

logger = logging.getLogger("skillwriter.runner")

READ_CHUNK_SIZE = 64 * 1024
PROGRESS_DRAIN_SECONDS = 5.0

ResultSource = Literal["generated", "reference-cache", "prompt-cache"]
ProgressKind = Literal["reasoning", "text"]


@dataclass(frozen=True)
class GenerationTask:
    """One section to generate in one run. Owned by a single runner."""

    section: Section
    prompt: str
    output_file: str
    work_dir: Path
    model_id: str


@dataclass
class SectionResult:
    """Terminal value of a GenerationTask.

    Either ``content`` is non-empty and ``was_optimized`` is set, or
    ``error`` explains why nothing was produced.
    """

    section: Section
    content: str = ""
    was_optimized: bool = False
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    warnings: list[ValidationWarning] = field(default_factory=list)
    usage: Optional[TokenUsage] = None
    cost: Optional[float] = None
    source: ResultSource = "generated"
    turns: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.was_optimized and bool(self.content)

    @classmethod
    def failure(
        cls,
        section: Section,
        error: str,
        error_code: ErrorCode,
        usage: Optional[TokenUsage] = None,
        cost: Optional[float] = None,
    ) -> "SectionResult":
        return cls(section=section, error=error, error_code=error_code, usage=usage, cost=cost)


@dataclass(frozen=True)
class StreamProgress:
    """Observational progress notification for live status rendering."""

    chunk: str
    kind: ProgressKind
    section: Section


ProgressCallback = Callable[[StreamProgress], None]


class ProgressReporter:
    """
    Deliver progress notifications on a dedicated worker thread.

    One worker keeps notifications in order. ``notify`` never waits for the
    consumer, so a slow callback cannot stall stream reading or eat into a
    section's timeout. ``close`` gives queued notifications a bounded
    grace period, then stops waiting.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self._callback = callback
        self._executor: Optional[ThreadPoolExecutor] = None
        if callback is not None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="skillwriter-progress")

    def notify(self, progress: StreamProgress) -> None:
        if self._executor is not None:
            self._executor.submit(self._deliver, progress)

    def _deliver(self, progress: StreamProgress) -> None:
        try:
            self._callback(progress)
        except Exception:
            logger.exception("Progress callback failed for %s", progress.section)

    async def close(self, timeout: float = PROGRESS_DRAIN_SECONDS) -> None:
        executor, self._executor = self._executor, None
        if executor is None:
            return
        # Completes once everything queued before it has been delivered
        marker = asyncio.wrap_future(executor.submit(lambda: None))
        try:
            await asyncio.wait_for(marker, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Progress consumer still busy after %s; not waiting", _format_timeout(timeout))
        finally:
            executor.shutdown(wait=False)


class LineBuffer:
    """Split a byte stream into complete lines.

    Bytes are buffered undecoded so a multi-byte character split across two
    chunks is never mangled. ``feed(b"", final=True)`` releases whatever
    partial line remains.
    """

    def __init__(self) -> None:
        self._pending = b""

    def feed(self, chunk: bytes, final: bool = False) -> list[str]:
        parts = (self._pending + chunk).split(b"\n")
        self._pending = b"" if final else parts.pop()
        return [p.decode("utf-8", errors="replace") for p in parts if p.strip()]


@dataclass
class StreamState:
    """Accumulated view of a backend's event stream."""

    text: str = ""
    last_write_content: str = ""
    usage: Optional[TokenUsage] = None
    cost: Optional[float] = None
    turns: Optional[int] = None
    done: bool = False

    def fold(self, event: StreamEvent) -> None:
        if event.text_delta:
            self.text += event.text_delta
        # A full message supersedes the deltas seen so far
        if event.full_text:
            self.text = event.full_text
        if event.write_content:
            self.last_write_content = event.write_content
        if event.usage is not None:
            self.usage = event.usage
        if event.cost is not None:
            self.cost = event.cost
        if event.turns is not None:
            self.turns = event.turns
        if event.done:
            self.done = True


def _format_timeout(seconds: float) -> str:
    return f"{seconds:g}s"


class SectionRunner:
    """
    Run a backend CLI for one section and turn its output into a SectionResult.

    Responsibilities:
    - Build argv through the backend adapter (no payload sniffing)
    - Stream stdout through LineBuffer and the adapter's parse_line
    - Enforce the wall-clock timeout and kill the child on expiry
    - Quarantine unexpected files left in the shared work dir
    - Resolve, clean and validate the final content
    """

    def __init__(
        self,
        model: ModelConfig,
        skill_dir: Path,
        timeout: float,
        progress: Optional[ProgressReporter] = None,
        debug: bool = False,
        pre_existing: frozenset[str] = frozenset(),
    ):
        self.model = model
        self.skill_dir = Path(skill_dir)
        self.timeout = timeout
        self.progress = progress or ProgressReporter()
        self.debug = debug
        self.pre_existing = pre_existing

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _notify(self, chunk: str, kind: ProgressKind, section: Section) -> None:
        self.progress.notify(StreamProgress(chunk=chunk, kind=kind, section=section))

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, task: GenerationTask) -> SectionResult:
        token = section_var.set(task.section.value)
        try:
            return await self._run(task)
        finally:
            section_var.reset(token)

    async def _run(self, task: GenerationTask) -> SectionResult:
        section = task.section
        work_dir = task.work_dir
        output_path = work_dir / task.output_file
        executable = self.model.executable
        adapter = self.model.adapter

        # Starting
        try:
            remove_entry(output_path)
        except FileNotFoundError:
            pass
        write_prompt_dump(work_dir, section, task.prompt)
        args = adapter.build_invocation_args(
            self.model.backend_model, self.skill_dir, resolve_reference_dirs(work_dir),
        )

        logger.info("Generating %s with %s (%s)", section, task.model_id, self.model)
        try:
            proc = await asyncio.create_subprocess_exec(
                executable, *args,
                cwd=work_dir,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, "NO_COLOR": "1"},
            )
        except OSError as e:
            logger.error("Failed to spawn %s for %s: %s", executable, section, e)
            return SectionResult.failure(
                section, f"Failed to spawn {executable}: {e}", ErrorCode.SPAWN_FAILED,
            )

        self._notify("[starting...]", "reasoning", section)

        state = StreamState()
        buffer = LineBuffer()
        raw_lines: list[str] = []
        stderr_chunks: list[bytes] = []
        timed_out = False

        def handle_line(line: str) -> None:
            if self.debug:
                raw_lines.append(line)
            event = adapter.parse_line(line)
            state.fold(event)
            if event.tool_name:
                if event.tool_hint:
                    hint = f"[{event.tool_name}: {shorten_path(event.tool_hint)}]"
                else:
                    hint = f"[{event.tool_name}]"
                self._notify(hint, "reasoning", section)

        try:
            # Streaming
            try:
                await asyncio.wait_for(
                    self._stream(proc, task.prompt, buffer, handle_line, stderr_chunks),
                    timeout=self.timeout,
                )
            except asyncio.TimeoutError:
                timed_out = True
                logger.warning(
                    "%s timed out after %s for %s, killing",
                    executable, _format_timeout(self.timeout), section,
                )
                self._kill(proc)
                await proc.wait()
        finally:
            if proc.returncode is None:
                self._kill(proc)
                await proc.wait()

        # Draining
        for line in buffer.feed(b"", final=True):
            handle_line(line)

        return self._finalize(
            task, output_path, state, raw_lines,
            stderr=b"".join(stderr_chunks).decode("utf-8", errors="replace"),
            exit_code=proc.returncode,
            timed_out=timed_out,
        )

    async def _stream(
        self,
        proc: asyncio.subprocess.Process,
        prompt: str,
        buffer: LineBuffer,
        handle_line: Callable[[str], None],
        stderr_chunks: list[bytes],
    ) -> None:
        await asyncio.gather(
            self._write_stdin(proc, prompt),
            self._read_stdout(proc, buffer, handle_line),
            self._read_stderr(proc, stderr_chunks),
        )
        await proc.wait()

    @staticmethod
    async def _write_stdin(proc: asyncio.subprocess.Process, prompt: str) -> None:
        try:
            proc.stdin.write(prompt.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug("Backend closed stdin early: %s", e)
        finally:
            proc.stdin.close()

    @staticmethod
    async def _read_stdout(
        proc: asyncio.subprocess.Process,
        buffer: LineBuffer,
        handle_line: Callable[[str], None],
    ) -> None:
        while True:
            chunk = await proc.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            for line in buffer.feed(chunk):
                handle_line(line)

    @staticmethod
    async def _read_stderr(proc: asyncio.subprocess.Process, chunks: list[bytes]) -> None:
        while True:
            chunk = await proc.stderr.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            chunks.append(chunk)

    @staticmethod
    def _kill(proc: asyncio.subprocess.Process) -> None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass

    # ------------------------------------------------------------------
    # Finalizing
    # ------------------------------------------------------------------

    def _finalize(
        self,
        task: GenerationTask,
        output_path: Path,
        state: StreamState,
        raw_lines: list[str],
        stderr: str,
        exit_code: Optional[int],
        timed_out: bool,
    ) -> SectionResult:
        section = task.section
        executable = self.model.executable

        quarantine_work_dir(task.work_dir, task.output_file, self.pre_existing)

        warnings: list[ValidationWarning] = []
        file_text = read_output_file(output_path)
        if file_text is not None:
            raw = file_text.strip()
            streamed = state.text.strip()
            if streamed and streamed != raw and looks_like_section_content(streamed):
                logger.warning("Streamed text for %s differs from %s; using the file", section, task.output_file)
                warnings.append(ValidationWarning(
                    section, f"Streamed text differs from {task.output_file}; used the file",
                ))
        else:
            raw = (state.last_write_content or state.text).strip()

        if self.debug:
            write_debug_logs(task.work_dir, section, raw_lines, raw, stderr)

        if not raw and (timed_out or exit_code != 0):
            if timed_out:
                error = stderr.strip() or f"{executable} timed out after {_format_timeout(self.timeout)}"
                code = ErrorCode.TIMEOUT
            else:
                error = stderr.strip() or f"{executable} exited with code {exit_code}"
                code = ErrorCode.EXIT_NONZERO
            logger.error("Generation failed for %s: %s", section, error[-2000:])
            return SectionResult.failure(section, error, code, usage=state.usage, cost=state.cost)

        content = clean_section_output(raw) if raw else ""
        if not content:
            logger.error("%s produced no usable output for %s", executable, section)
            return SectionResult.failure(
                section, f"{executable} produced no output", ErrorCode.EMPTY_OUTPUT,
                usage=state.usage, cost=state.cost,
            )

        write_output_file(output_path, content)

        warnings.extend(validate_section_output(content, section))
        if timed_out:
            warnings.append(ValidationWarning(
                section, f"Timed out after {_format_timeout(self.timeout)}; output may be incomplete",
            ))

        logger.info(
            "Generated %s: %d lines, %s turn(s), exit code %s%s",
            section, len(content.split("\n")),
            state.turns if state.turns is not None else "?",
            exit_code, "" if state.done else ", no completion event",
        )
        return SectionResult(
            section=section,
            content=content,
            was_optimized=True,
            warnings=warnings,
            usage=state.usage,
            cost=state.cost,
            turns=state.turns,
        )
