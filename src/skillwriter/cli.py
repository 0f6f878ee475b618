"""
Command-line entry point.

    skillwriter generate --package vue --skill-dir .claude/skills/vue \\
        --version 3.5.0 --section llm-gaps=prompts/gaps.md --section api=prompts/api.md
    skillwriter models
    skillwriter cache clean
    skillwriter cache clear --package vue --version 3.5.0

The merged document goes to stdout (or --output); logs and progress go to
stderr. ``generate`` exits non-zero only when every section failed.
"""

import argparse
import sys
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv
from pydantic import ValidationError

from skillwriter.backends import MODEL_REGISTRY, get_available_models, get_model_label
from skillwriter.cache import CacheStore
from skillwriter.config import Settings
from skillwriter.exceptions import ModelConfigError
from skillwriter.logging_config import setup_logging
from skillwriter.orchestrator import generate_sections
from skillwriter.runner import StreamProgress
from skillwriter.sections import Section, parse_section


def _parse_section_arg(value: str) -> tuple[Section, Path]:
    """``NAME=PROMPT_FILE`` → ``(Section, Path)``."""
    name, sep, path = value.partition("=")
    if not sep or not path:
        raise argparse.ArgumentTypeError(f"Expected NAME=PROMPT_FILE, got '{value}'")
    try:
        return parse_section(name.strip()), Path(path)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from None


def _print_progress(progress: StreamProgress) -> None:
    print(f"  [{progress.section.value}] {progress.chunk}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="skillwriter",
        description="Generate documentation sections with command-line AI assistants",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s generate --package vue --skill-dir ./skills/vue --section api=api.md
  %(prog)s generate --package vue --skill-dir ./skills/vue --model gemini-3-flash \\
      --section llm-gaps=gaps.md --section best-practices=practices.md
  %(prog)s models
  %(prog)s cache clean
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate", help="Generate sections and print the merged document")
    gen.add_argument("--package", required=True, help="Package name (reference cache key)")
    gen.add_argument("--skill-dir", required=True, type=Path, help="Skill directory; work dir is <skill-dir>/.skilld")
    gen.add_argument("--version", default=None, help="Package version; enables the reference cache")
    gen.add_argument("--model", default=None, help="Logical model id (default: from settings)")
    gen.add_argument(
        "--section",
        action="append",
        required=True,
        type=_parse_section_arg,
        metavar="NAME=PROMPT_FILE",
        help=f"Section to generate and its prompt file; repeatable. Sections: {', '.join(s.value for s in Section)}",
    )
    gen.add_argument("--timeout", type=float, default=None, help="Per-section timeout in seconds")
    gen.add_argument("--no-cache", action="store_true", help="Skip cache lookups and regenerate")
    gen.add_argument("--debug", action="store_true", help="Write raw backend logs under <work dir>/logs")
    gen.add_argument("--output", "-o", type=Path, default=None, help="Write the merged document here")
    gen.add_argument("--quiet", "-q", action="store_true", help="Do not print progress")

    sub.add_parser("models", help="List known models and whether their CLI is installed")

    cache = sub.add_parser("cache", help="Cache maintenance")
    cache_sub = cache.add_subparsers(dest="cache_command", required=True)
    cache_sub.add_parser("clean", help="Remove expired and corrupt prompt cache entries")
    clear = cache_sub.add_parser("clear", help="Remove one package version from the reference cache")
    clear.add_argument("--package", required=True)
    clear.add_argument("--version", required=True)

    return parser


def _cmd_generate(args: argparse.Namespace, app_settings: Settings) -> int:
    prompts: dict[Section, str] = {}
    for section, path in args.section:
        try:
            prompts[section] = path.read_text(encoding="utf-8")
        except OSError as e:
            print(f"[Error] Cannot read prompt for {section.value}: {e}", file=sys.stderr)
            return 1

    try:
        result = generate_sections(
            package_name=args.package,
            skill_dir=args.skill_dir,
            section_prompts=prompts,
            model=args.model or app_settings.default_model,
            version=args.version,
            cache=CacheStore.from_settings(app_settings),
            timeout=args.timeout or app_settings.timeout_seconds,
            no_cache=args.no_cache,
            debug=args.debug or app_settings.debug,
            on_progress=None if args.quiet else _print_progress,
        )
    except ModelConfigError as e:
        print(f"[Error] {e.message}", file=sys.stderr)
        return 1

    for warning in result.warnings:
        print(f"[Warning] {warning}", file=sys.stderr)
    if result.error:
        print(f"[Error] {result.error}", file=sys.stderr)
    if result.usage:
        cost = f", ${result.cost:.4f}" if result.cost is not None else ""
        print(
            f"[Usage] {result.usage.input} in / {result.usage.output} out tokens{cost}",
            file=sys.stderr,
        )
    if result.debug_logs_dir:
        print(f"[Debug] Logs in {result.debug_logs_dir}", file=sys.stderr)

    if not result.was_optimized:
        return 1

    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(result.merged_text + "\n", encoding="utf-8")
        print(f"[Done] Wrote {args.output}", file=sys.stderr)
    else:
        print(result.merged_text)

    if result.failed_sections:
        failed = ", ".join(s.value for s in result.failed_sections)
        print(f"[Warning] Partial result; failed sections: {failed}", file=sys.stderr)
    return 0


def _cmd_models() -> int:
    installed = {m.model_id for m in get_available_models()}
    for model_id, config in MODEL_REGISTRY.items():
        marks = []
        if config.recommended:
            marks.append("recommended")
        marks.append("installed" if model_id in installed else "not installed")
        print(f"{model_id:<20} {get_model_label(model_id):<32} {config.hint} ({', '.join(marks)})")
    return 0


def _cmd_cache(args: argparse.Namespace, app_settings: Settings) -> int:
    store = CacheStore.from_settings(app_settings)
    if args.cache_command == "clean":
        removed, freed = store.prompts.clean_expired()
        if removed:
            print(f"Removed {removed} expired cache entries ({round(freed / 1024)}KB freed)")
        else:
            print("Cache is clean, no expired entries")
        return 0

    if store.reference.clear(args.package, args.version):
        print(f"Cleared {args.package}@{args.version}")
    else:
        print(f"No cache for {args.package}@{args.version}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        app_settings = Settings()
    except ValidationError as e:
        print(f"[Error] Invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(app_settings.log_level, app_settings.log_format)

    if args.command == "generate":
        return _cmd_generate(args, app_settings)
    if args.command == "models":
        return _cmd_models()
    return _cmd_cache(args, app_settings)


if __name__ == "__main__":
    sys.exit(main())
