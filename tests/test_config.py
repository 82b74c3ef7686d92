import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from toolcall_engine.core import ApprovalContext, ToolCallManagerSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for key in list(os.environ):
        if key.startswith("TOOLCALL_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


def test_defaults() -> None:
    settings = ToolCallManagerSettings()
    assert settings.concurrency_limit is None
    assert settings.tool_timeout is None
    assert settings.max_tool_result_chars == 10_000
    assert settings.max_failed_repeats == 2
    assert settings.max_denied_repeats == 1
    assert settings.namespace_prefixes == ("mcp-",)


def test_from_env_reads_prefixed_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOOLCALL_CONCURRENCY_LIMIT", "3")
    monkeypatch.setenv("TOOLCALL_TOOL_TIMEOUT", "12.5")
    monkeypatch.setenv("TOOLCALL_MAX_TOOL_RESULT_CHARS", "none")
    monkeypatch.setenv("TOOLCALL_MAX_FAILED_REPEATS", "4")
    monkeypatch.setenv("TOOLCALL_NAMESPACE_PREFIXES", " MCP-, ext-,")

    settings = ToolCallManagerSettings.from_env()

    assert settings.concurrency_limit == 3
    assert settings.tool_timeout == 12.5
    assert settings.max_tool_result_chars is None
    assert settings.max_failed_repeats == 4
    assert settings.max_denied_repeats == 1
    assert settings.namespace_prefixes == ("mcp-", "ext-")


def test_from_env_loads_dotenv_file(tmp_path: Path) -> None:
    env_file = tmp_path / "engine.env"
    env_file.write_text("TOOLCALL_MAX_DENIED_REPEATS=3\nTOOLCALL_CONCURRENCY_LIMIT=none\n")

    try:
        settings = ToolCallManagerSettings.from_env(str(env_file))
    finally:
        os.environ.pop("TOOLCALL_MAX_DENIED_REPEATS", None)
        os.environ.pop("TOOLCALL_CONCURRENCY_LIMIT", None)

    assert settings.max_denied_repeats == 3
    assert settings.concurrency_limit is None


def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOOLCALL_CONCURRENCY_LIMIT", "0")
    with pytest.raises(ValidationError):
        ToolCallManagerSettings.from_env()

    with pytest.raises(ValidationError):
        ToolCallManagerSettings(tool_timeout=-1)


def test_approval_context_is_immutable() -> None:
    context = ApprovalContext(auto_approve_allowlist=["mcp-vault:write_note"])
    assert context.require_destructive_approval is True
    assert context.trusted_tool_names == set()
    with pytest.raises(ValidationError):
        context.require_destructive_approval = False  # type: ignore[misc]
