"""
Backend registry and model resolution.

Single source of truth for which CLI backs which logical model id. Each
adapter module declares its own models; this module assembles them into
MODEL_REGISTRY once at import time and never mutates it afterwards.

Dispatch is a static map from backend name to adapter. The runner looks the
adapter up by ``ModelConfig.backend`` and never inspects payload shapes to
guess which CLI it is talking to.

If a model id is not in the registry, resolve_model_config() raises
ModelConfigError rather than silently picking a default backend. A wrong
guess here would spawn the wrong CLI with a model string it rejects.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass

from skillwriter.backends import claude, codex, gemini
from skillwriter.backends.base import BackendAdapter, ModelEntry
from skillwriter.exceptions import ModelConfigError

logger = logging.getLogger("skillwriter.backends")

ADAPTERS: dict[str, BackendAdapter] = {
    claude.BACKEND: claude.ADAPTER,
    gemini.BACKEND: gemini.ADAPTER,
    codex.BACKEND: codex.ADAPTER,
}


@dataclass(frozen=True)
class ModelConfig:
    """Registry entry mapping a logical model id to its backend invocation."""

    model_id: str
    backend: str            # key into ADAPTERS
    backend_model: str      # model string passed to the CLI
    display_name: str
    hint: str
    recommended: bool = False
    command: str = ""       # executable; defaults to the backend name

    @property
    def executable(self) -> str:
        return self.command or self.backend

    @property
    def adapter(self) -> BackendAdapter:
        return ADAPTERS[self.backend]

    def __str__(self) -> str:
        parts = [
            f"backend={self.backend}",
            f"model={self.backend_model}",
        ]
        if self.command:
            parts.append(f"command={self.command}")
        if self.recommended:
            parts.append("recommended")
        return " ".join(parts)


def _build_registry() -> dict[str, ModelConfig]:
    registry: dict[str, ModelConfig] = {}
    for adapter in ADAPTERS.values():
        for model_id, entry in adapter.models.items():
            registry[model_id] = _to_config(model_id, adapter.name, entry)
    return registry


def _to_config(model_id: str, backend: str, entry: ModelEntry) -> ModelConfig:
    return ModelConfig(
        model_id=model_id,
        backend=backend,
        backend_model=entry.backend_model,
        display_name=entry.display_name,
        hint=entry.hint,
        recommended=entry.recommended,
    )


MODEL_REGISTRY: dict[str, ModelConfig] = _build_registry()


def resolve_model_config(model_id: str) -> ModelConfig:
    """Look up a logical model id.

    Raises:
        ModelConfigError: If the id is unknown. Lists known ids in the message.
    """
    config = MODEL_REGISTRY.get(model_id)
    if config is None:
        raise ModelConfigError(model_id, list(MODEL_REGISTRY))
    return config


def get_model_name(model_id: str) -> str:
    config = MODEL_REGISTRY.get(model_id)
    return config.display_name if config else model_id


def get_model_label(model_id: str) -> str:
    """``"Claude Code · Sonnet 4.5"`` style label, or the bare id if unknown."""
    config = MODEL_REGISTRY.get(model_id)
    if config is None:
        return model_id
    return f"{config.adapter.agent_name} · {config.display_name}"


def get_available_models() -> list[ModelConfig]:
    """Registry entries whose backend executable is installed on PATH."""
    installed = {
        name for name in ADAPTERS
        if shutil.which(name) is not None
    }
    missing = sorted(set(ADAPTERS) - installed)
    if missing:
        logger.debug("Backend CLIs not found on PATH: %s", ", ".join(missing))
    return [config for config in MODEL_REGISTRY.values() if config.backend in installed]


__all__ = [
    "ADAPTERS",
    "BackendAdapter",
    "MODEL_REGISTRY",
    "ModelConfig",
    "ModelEntry",
    "get_available_models",
    "get_model_label",
    "get_model_name",
    "resolve_model_config",
]
