"""Multi-backend documentation section generator.

Spawns one command-line AI assistant per documentation section, normalizes
their streaming output, caches the results and merges them into one body.
"""

from skillwriter.backends import MODEL_REGISTRY, ModelConfig, resolve_model_config
from skillwriter.cache import CacheStore, PromptCache, ReferenceCache
from skillwriter.events import StreamEvent, TokenUsage
from skillwriter.exceptions import ErrorCode, ModelConfigError, SkillwriterError
from skillwriter.orchestrator import GenerationResult, SectionScheduler, generate_sections
from skillwriter.runner import SectionResult, SectionRunner
from skillwriter.sanitize import repair_markdown, sanitize_markdown
from skillwriter.sections import SECTION_MERGE_ORDER, SECTION_OUTPUT_FILES, Section

__version__ = "0.1.0"

__all__ = [
    "CacheStore",
    "ErrorCode",
    "GenerationResult",
    "MODEL_REGISTRY",
    "ModelConfig",
    "ModelConfigError",
    "PromptCache",
    "ReferenceCache",
    "SECTION_MERGE_ORDER",
    "SECTION_OUTPUT_FILES",
    "Section",
    "SectionResult",
    "SectionRunner",
    "SectionScheduler",
    "SkillwriterError",
    "StreamEvent",
    "TokenUsage",
    "generate_sections",
    "repair_markdown",
    "resolve_model_config",
    "sanitize_markdown",
]
