"""
Registry of known models, their aliases and families.

Used for alias resolution during pricing and for the ``--model`` filter.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

FAMILIES = ("opus", "sonnet", "haiku")


@dataclass(frozen=True)
class ModelInfo:
    """Static description of a model."""
    name: str
    family: str
    aliases: Tuple[str, ...] = ()
    version: Optional[str] = None
    release_date: Optional[str] = None


DEFAULT_MODELS: Tuple[ModelInfo, ...] = (
    ModelInfo("claude-opus-4-20250514", "opus", ("opus-4", "opus4"), "4.0", "2025-05-14"),
    ModelInfo("claude-3-opus-20240229", "opus", ("opus-3", "opus3"), "3.0", "2024-02-29"),
    ModelInfo("claude-sonnet-4-20250514", "sonnet", ("sonnet-4", "sonnet4"), "4.0", "2025-05-14"),
    ModelInfo("claude-3-7-sonnet-20250219", "sonnet", ("sonnet-3.7", "sonnet3.7"), "3.7", "2025-02-19"),
    ModelInfo("claude-3-5-sonnet-20241022", "sonnet", ("sonnet-3.5", "sonnet3.5"), "3.5", "2024-10-22"),
    ModelInfo("claude-3-5-haiku-20241022", "haiku", ("haiku-3.5", "haiku3.5"), "3.5", "2024-10-22"),
    ModelInfo("claude-3-haiku-20240307", "haiku", ("haiku-3", "haiku3"), "3.0", "2024-03-07"),
)


@dataclass
class ModelsRegistry:
    """Lookup of models by name, alias and family."""
    models: Dict[str, ModelInfo] = field(default_factory=dict)
    families: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def default(cls) -> "ModelsRegistry":
        registry = cls()
        for info in DEFAULT_MODELS:
            registry.register_model(info)
        return registry

    def register_model(self, info: ModelInfo) -> None:
        self.families.setdefault(info.family, []).append(info.name)
        self.models[info.name] = info

    def resolve_alias(self, alias: str) -> Optional[str]:
        """Return the canonical name registered for ``alias``, if any."""
        wanted = alias.lower()
        for info in self.models.values():
            if any(a.lower() == wanted for a in info.aliases):
                return info.name
        return None

    def get_model_info(self, model_name: str) -> Optional[ModelInfo]:
        if model_name in self.models:
            return self.models[model_name]
        canonical = self.resolve_alias(model_name)
        if canonical:
            return self.models[canonical]
        for name in sorted(self.models):
            if model_name in name or name in model_name:
                return self.models[name]
        return None

    def get_model_family(self, model_name: str) -> Optional[str]:
        """Family from the registry, else by name heuristic."""
        info = self.get_model_info(model_name)
        if info is not None:
            return info.family
        return detect_family(model_name)

    def matches_filter(self, model_name: str, model_filter: str) -> bool:
        """Check whether a model passes a user-supplied ``--model`` filter.

        A filter matches by substring, by family name, or by alias.
        """
        wanted = model_filter.lower()
        if wanted in model_name.lower():
            return True

        info = self.get_model_info(model_name)
        if wanted in self.families:
            family = info.family if info is not None else detect_family(model_name)
            return family == wanted
        if info is not None:
            return any(alias.lower() == wanted for alias in info.aliases)
        return False

    def list_models(self) -> List[ModelInfo]:
        return sorted(self.models.values(), key=lambda m: (m.family, m.version or "", m.name))

    def list_families(self) -> List[str]:
        return sorted(self.families)

    def get_models_by_family(self, family: str) -> List[ModelInfo]:
        return [self.models[name] for name in self.families.get(family, [])]


def detect_family(model_name: str) -> Optional[str]:
    lowered = model_name.lower()
    for family in FAMILIES:
        if family in lowered:
            return family
    return None
