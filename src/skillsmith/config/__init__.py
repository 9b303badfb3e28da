"""Configuration package."""

from .settings import (
    ContainerSettings,
    GenerationSettings,
    LLMSettings,
    PromptMode,
    PromptSettings,
    Provider,
    Settings,
    Stage,
    load_settings,
)

__all__ = [
    "ContainerSettings",
    "GenerationSettings",
    "LLMSettings",
    "PromptMode",
    "PromptSettings",
    "Provider",
    "Settings",
    "Stage",
    "load_settings",
]
