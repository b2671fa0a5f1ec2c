from datetime import datetime, timedelta, timezone

import pytest

from ragchat.agent.capabilities import (
    DEFAULT_TOOL_CHOICE,
    MODEL_TOOL_SUPPORT,
    ToolChoiceMode,
    tool_choice_hint,
    tool_choice_mode,
)
from ragchat.agent.orchestrator import build_system_prompt, format_datetime


def test_prompt_includes_datetime_and_tool_instructions() -> None:
    prompt = build_system_prompt("Be concise.", "Monday, June 02, 2025, 14:05 CEST", use_tools=True)

    assert prompt.startswith("Be concise.\n\nCurrent date and time: Monday, June 02, 2025, 14:05 CEST")
    assert "you MUST use the web_search function" in prompt


def test_prompt_without_tools_has_no_tool_instructions() -> None:
    prompt = build_system_prompt("Be concise.", "now", use_tools=False)

    assert prompt == "Be concise.\n\nCurrent date and time: now"


def test_datetime_is_formatted_in_configured_zone() -> None:
    moment = datetime(2025, 6, 2, 14, 5, tzinfo=timezone(timedelta(hours=2), "CEST"))

    assert format_datetime(moment) == "Monday, June 02, 2025, 14:05 CEST"


def test_unknown_models_get_no_tool_choice_hint() -> None:
    assert tool_choice_mode("someone/unknown-model") is DEFAULT_TOOL_CHOICE
    assert tool_choice_hint(DEFAULT_TOOL_CHOICE) is None
    assert tool_choice_hint(ToolChoiceMode.AUTO) == "auto"
    assert tool_choice_hint(ToolChoiceMode.REQUIRED) == "required"


def test_capability_table_is_read_only() -> None:
    assert MODEL_TOOL_SUPPORT["meta-llama/Llama-3.3-70B-Instruct-fast"] is ToolChoiceMode.AUTO
    with pytest.raises(TypeError):
        MODEL_TOOL_SUPPORT["new/model"] = ToolChoiceMode.AUTO  # type: ignore[index]
