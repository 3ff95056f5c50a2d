"""
Policy tables — the static data the gateway consults on every request.

Model mapping, unsafe-content patterns, language context sentences,
uncertainty phrases and payload limits all live in policy.yaml next to
this module. config.yaml may override any top-level section. The merged
result is frozen into a Policy once at startup and shared read-only by
every request.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

import yaml

logger = logging.getLogger(__name__)

_DEFAULTS_PATH = Path(__file__).parent / "policy.yaml"

_SECTIONS = ("models", "default_model", "safety", "prompts", "warnings", "limits")


@dataclass(frozen=True)
class Policy:
    """Immutable lookup tables built once from config."""
    models: Mapping[str, str]
    default_model: str
    unsafe_patterns: tuple[tuple[str, re.Pattern], ...]
    redaction_marker: str
    language_contexts: Mapping[str, str]
    uncertainty_phrases: tuple[str, ...]
    max_code_chars: int = 50000
    max_message_chars: int = 10000

    def resolve_model(self, model_id: str | None) -> str:
        """Map a client model id to a provider model string. Unknown ids get the default."""
        if model_id and model_id in self.models:
            return self.models[model_id]
        if model_id:
            logger.debug("Unknown model id '%s', using default %s", model_id, self.default_model)
        return self.default_model


def load_defaults(path: Path | None = None) -> dict:
    """Read the built-in policy tables."""
    with open(path or _DEFAULTS_PATH) as f:
        return yaml.safe_load(f) or {}


def _compile_patterns(entries: list) -> tuple[tuple[str, re.Pattern], ...]:
    compiled = []
    for i, entry in enumerate(entries):
        if isinstance(entry, str):
            name, pattern = f"pattern_{i}", entry
        else:
            pattern = entry.get("pattern", "")
            name = entry.get("name") or f"pattern_{i}"
        if not pattern:
            logger.warning("Safety pattern '%s' is empty, skipping", name)
            continue
        compiled.append((name, re.compile(pattern, re.IGNORECASE)))
    return tuple(compiled)


def build_policy(cfg: dict | None = None, defaults: dict | None = None) -> Policy:
    """
    Merge config overrides onto the built-in tables and freeze the result.

    Overrides replace whole sections: a config.yaml `models:` block replaces
    the built-in model table rather than extending it.
    """
    cfg = cfg or {}
    data = dict(defaults if defaults is not None else load_defaults())
    for section in _SECTIONS:
        if section in cfg and cfg[section] is not None:
            data[section] = cfg[section]

    safety = data.get("safety", {}) or {}
    prompts = data.get("prompts", {}) or {}
    warnings = data.get("warnings", {}) or {}
    limits = data.get("limits", {}) or {}

    models = {str(k): str(v) for k, v in (data.get("models", {}) or {}).items()}
    languages = {str(k).lower(): str(v) for k, v in (prompts.get("languages", {}) or {}).items()}
    phrases = tuple(p.lower() for p in warnings.get("uncertainty_phrases", []) or [])

    policy = Policy(
        models=MappingProxyType(models),
        default_model=data.get("default_model", ""),
        unsafe_patterns=_compile_patterns(safety.get("patterns", []) or []),
        redaction_marker=safety.get("redaction_marker", "[CONTENT BLOCKED FOR SAFETY]"),
        language_contexts=MappingProxyType(languages),
        uncertainty_phrases=phrases,
        max_code_chars=int(limits.get("max_code_chars", 50000)),
        max_message_chars=int(limits.get("max_message_chars", 10000)),
    )
    logger.debug(
        "Policy built: %d models, %d safety patterns, %d languages",
        len(policy.models), len(policy.unsafe_patterns), len(policy.language_contexts),
    )
    return policy
