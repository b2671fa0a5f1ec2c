"""Per-model tool-choice support."""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType


class ToolChoiceMode(str, Enum):
    """Whether a model accepts an explicit ``tool_choice`` hint.

    AUTO sends ``"auto"``, REQUIRED sends ``"required"``, NONE sends no hint
    and lets the model decide on its own.
    """

    AUTO = "auto"
    REQUIRED = "required"
    NONE = "none"


DEFAULT_TOOL_CHOICE = ToolChoiceMode.NONE

MODEL_TOOL_SUPPORT = MappingProxyType(
    {
        "meta-llama/Llama-3.3-70B-Instruct-fast": ToolChoiceMode.AUTO,
        "meta-llama/Llama-3.3-70B-Instruct": ToolChoiceMode.AUTO,
        "Qwen/Qwen3-32B-fast": ToolChoiceMode.AUTO,
        "Qwen/Qwen3-235B-A22B-Instruct-2507": ToolChoiceMode.AUTO,
        "deepseek-ai/DeepSeek-V3-0324-fast": ToolChoiceMode.AUTO,
        "deepseek-ai/DeepSeek-R1-0528-fast": ToolChoiceMode.NONE,
        "google/gemma-3-27b-it-fast": ToolChoiceMode.NONE,
        "moonshotai/Kimi-K2-Instruct": ToolChoiceMode.NONE,
        "moonshotai/Kimi-K2-Thinking": ToolChoiceMode.NONE,
        "zai-org/GLM-4.5": ToolChoiceMode.NONE,
    }
)


def tool_choice_mode(model: str) -> ToolChoiceMode:
    return MODEL_TOOL_SUPPORT.get(model, DEFAULT_TOOL_CHOICE)


def tool_choice_hint(mode: ToolChoiceMode) -> str | None:
    """Value for the request's ``tool_choice`` field, or None to omit it."""
    if mode is ToolChoiceMode.NONE:
        return None
    return mode.value
