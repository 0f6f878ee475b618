"""
Section scheduler: cache lookup, concurrent fan-out, fixed-order merge.

Responsibilities:
- Consult the reference cache, then the prompt cache, for every section
- Run one SectionRunner per cache miss, all concurrently
- Settle every section independently; one failure never aborts siblings
- Write fresh results back to both cache tiers
- Merge content in SECTION_MERGE_ORDER and aggregate usage, cost,
  errors and warnings
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Union

from skillwriter.backends import ModelConfig, resolve_model_config
from skillwriter.cache import CacheStore
from skillwriter.events import TokenUsage
from skillwriter.exceptions import ErrorCode
from skillwriter.runner import (
    GenerationTask,
    ProgressCallback,
    ProgressReporter,
    SectionResult,
    SectionRunner,
    StreamProgress,
)
from skillwriter.sections import (
    LOGS_DIRNAME,
    SECTION_MERGE_ORDER,
    SECTION_OUTPUT_FILES,
    Section,
    parse_section,
)
from skillwriter.workspace import prepare_work_dir, snapshot_entries, work_dir_path

logger = logging.getLogger("skillwriter.orchestrator")

DEFAULT_MODEL = "sonnet"
DEFAULT_TIMEOUT_SECONDS = 180.0

SectionPrompts = Mapping[Union[Section, str], str]


@dataclass
class GenerationResult:
    """Aggregate of one run across all requested sections."""

    merged_text: str
    was_optimized: bool
    error: Optional[str] = None
    warnings: list[str] = field(default_factory=list)
    usage: Optional[TokenUsage] = None
    cost: Optional[float] = None
    sections: list[SectionResult] = field(default_factory=list)
    error_code: Optional[ErrorCode] = None
    debug_logs_dir: Optional[Path] = None

    @property
    def finish_reason(self) -> str:
        return "stop" if self.was_optimized else "error"

    @property
    def failed_sections(self) -> list[Section]:
        return [r.section for r in self.sections if r.error]


class SectionScheduler:
    """
    Generate a set of sections for one package with one backend model.

    The model is resolved at construction time; an unknown model id raises
    ModelConfigError before anything touches the filesystem.
    """

    def __init__(
        self,
        package_name: str,
        skill_dir: Union[str, Path],
        model: Union[str, ModelConfig] = DEFAULT_MODEL,
        version: Optional[str] = None,
        cache: Optional[CacheStore] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        no_cache: bool = False,
        debug: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.model = model if isinstance(model, ModelConfig) else resolve_model_config(model)
        self.package_name = package_name
        self.skill_dir = Path(skill_dir)
        self.version = version
        self.cache = cache or CacheStore()
        self.timeout = timeout
        self.no_cache = no_cache
        self.debug = debug
        self.on_progress = on_progress

    @property
    def model_id(self) -> str:
        return self.model.model_id

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _lookup_cache(self, section: Section, prompt: str) -> Optional[SectionResult]:
        reference = self.cache.reference
        if reference is not None and self.version:
            text = reference.read(self.package_name, self.version, SECTION_OUTPUT_FILES[section])
            if text:
                return SectionResult(section, content=text, was_optimized=True, source="reference-cache")

        prompts = self.cache.prompts
        if prompts is not None:
            text = prompts.get(prompt, self.model_id, section)
            if text:
                return SectionResult(section, content=text, was_optimized=True, source="prompt-cache")

        return None

    def _store_results(self, results: list[SectionResult], prompts: Mapping[Section, str]) -> None:
        """Write fresh results to the prompt cache and all new content to the reference cache."""
        if self.cache.prompts is not None:
            for result in results:
                if result.ok and result.source == "generated":
                    try:
                        self.cache.prompts.set(prompts[result.section], self.model_id, result.section, result.content)
                    except OSError as e:
                        logger.warning("Could not write prompt cache for %s: %s", result.section, e)

        if self.cache.reference is not None and self.version:
            files = [
                (SECTION_OUTPUT_FILES[r.section], r.content)
                for r in results
                if r.ok and r.source != "reference-cache"
            ]
            if files:
                try:
                    self.cache.reference.write_sections(self.package_name, self.version, files)
                except OSError as e:
                    logger.warning(
                        "Could not write reference cache for %s@%s: %s", self.package_name, self.version, e,
                    )

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def generate(self, section_prompts: SectionPrompts) -> GenerationResult:
        prompts: dict[Section, str] = {}
        for key, prompt in section_prompts.items():
            section = key if isinstance(key, Section) else parse_section(key)
            if not prompt or not prompt.strip():
                logger.warning("Skipping %s: empty prompt", section)
                continue
            prompts[section] = prompt

        if not prompts:
            return GenerationResult(
                merged_text="",
                was_optimized=False,
                error="No valid sections to generate",
                error_code=ErrorCode.NO_SECTIONS,
            )

        progress = ProgressReporter(self.on_progress)
        try:
            results: list[SectionResult] = []
            uncached: list[Section] = []
            for section, prompt in prompts.items():
                cached = None if self.no_cache else self._lookup_cache(section, prompt)
                if cached is None:
                    uncached.append(section)
                    continue
                logger.info("Using %s for %s", cached.source, section)
                progress.notify(StreamProgress(f"[{section.value}: cached]", "text", section))
                results.append(cached)

            logger.info(
                "Generating %d section(s) for %s with %s (%d cached)",
                len(uncached), self.package_name, self.model_id, len(results),
            )

            debug_logs_dir = None
            if uncached:
                results.extend(await self._fan_out(uncached, prompts, progress))
                if self.debug:
                    debug_logs_dir = work_dir_path(self.skill_dir) / LOGS_DIRNAME
        finally:
            await progress.close()

        self._store_results(results, prompts)
        return self._merge(results, debug_logs_dir)

    async def _fan_out(
        self,
        sections: list[Section],
        prompts: Mapping[Section, str],
        progress: ProgressReporter,
    ) -> list[SectionResult]:
        work_dir = prepare_work_dir(self.skill_dir)
        runner = SectionRunner(
            model=self.model,
            skill_dir=self.skill_dir,
            timeout=self.timeout,
            progress=progress,
            debug=self.debug,
            pre_existing=snapshot_entries(work_dir),
        )
        tasks = [
            GenerationTask(
                section=section,
                prompt=prompts[section],
                output_file=SECTION_OUTPUT_FILES[section],
                work_dir=work_dir,
                model_id=self.model_id,
            )
            for section in sections
        ]

        outcomes = await asyncio.gather(*(runner.run(t) for t in tasks), return_exceptions=True)

        results: list[SectionResult] = []
        for task, outcome in zip(tasks, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("Generation failed for %s: %s", task.section, outcome, exc_info=outcome)
                outcome = SectionResult.failure(
                    task.section, str(outcome) or type(outcome).__name__, ErrorCode.INTERNAL_ERROR,
                )
            results.append(outcome)
        return results

    @staticmethod
    def _merge(results: list[SectionResult], debug_logs_dir: Optional[Path]) -> GenerationResult:
        by_section = {r.section: r for r in results}
        ordered = [by_section[s] for s in SECTION_MERGE_ORDER if s in by_section]

        parts = [r.content for r in ordered if r.ok]

        usage: Optional[TokenUsage] = None
        cost: Optional[float] = None
        for r in ordered:
            if r.usage is not None:
                usage = (usage or TokenUsage()) + r.usage
            if r.cost is not None:
                cost = (cost or 0.0) + r.cost

        errors = [f"{r.section.value}: {r.error}" for r in ordered if r.error]
        warnings = [str(w) for r in ordered for w in r.warnings]

        if errors:
            logger.warning("%d of %d section(s) failed", len(errors), len(ordered))

        return GenerationResult(
            merged_text="\n\n".join(parts),
            was_optimized=bool(parts),
            error="; ".join(errors) if errors else None,
            warnings=warnings,
            usage=usage,
            cost=cost,
            sections=ordered,
            error_code=None if parts else _aggregate_error_code(ordered),
            debug_logs_dir=debug_logs_dir,
        )


def _aggregate_error_code(results: list[SectionResult]) -> Optional[ErrorCode]:
    codes = {r.error_code for r in results if r.error_code is not None}
    if len(codes) == 1:
        return codes.pop()
    return ErrorCode.INTERNAL_ERROR if codes else None


def generate_sections(
    package_name: str,
    skill_dir: Union[str, Path],
    section_prompts: SectionPrompts,
    model: Union[str, ModelConfig, None] = None,
    version: Optional[str] = None,
    cache: Optional[CacheStore] = None,
    timeout: Optional[float] = None,
    no_cache: bool = False,
    debug: Optional[bool] = None,
    on_progress: Optional[ProgressCallback] = None,
    app_settings=None,
) -> GenerationResult:
    """Blocking entry point.

    Model, timeout, debug and the cache root fall back to the configured
    settings when not given.
    """
    if app_settings is None:
        from skillwriter.config import settings as app_settings
    scheduler = SectionScheduler(
        package_name=package_name,
        skill_dir=skill_dir,
        model=model if model is not None else app_settings.default_model,
        version=version,
        cache=cache if cache is not None else CacheStore.from_settings(app_settings),
        timeout=timeout if timeout is not None else app_settings.timeout_seconds,
        no_cache=no_cache,
        debug=debug if debug is not None else app_settings.debug,
        on_progress=on_progress,
    )
    return asyncio.run(scheduler.generate(section_prompts))
