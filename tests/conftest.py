import pytest

from toolcall_engine import SimpleToolRegistry, ToolCallManager
from toolcall_engine.core import ToolCallManagerSettings


@pytest.fixture
def registry() -> SimpleToolRegistry:
    return SimpleToolRegistry()


@pytest.fixture
def settings() -> ToolCallManagerSettings:
    return ToolCallManagerSettings()


@pytest.fixture
def manager(registry: SimpleToolRegistry, settings: ToolCallManagerSettings) -> ToolCallManager:
    return ToolCallManager(registry, settings=settings)
