"""Pytest configuration and fixtures"""

import pytest
from typing import Any, Dict, List

from voice_commands.core.config import Settings
from voice_commands.core.logging import setup_logging
from voice_commands.services.commands import register_default_commands
from voice_commands.services.pipeline.base import ConversationTurn, Entity, EntityType
from voice_commands.services.pipeline.orchestrator import PipelineEngine
from voice_commands.services.registry import CommandRegistry


setup_logging(level="DEBUG")


class RecordingHandler:
    """Command callback that remembers its calls"""

    def __init__(self, action: str):
        self.action = action
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, parameters: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(parameters)
        data = {k: v for k, v in parameters.items() if k not in ("context", "user_id", "timestamp")}
        return {"action": self.action, "data": data}


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from the environment"""
    return Settings(
        _env_file=None,
        language="de-CH",
        confidence_threshold=0.7,
        max_processing_time_ms=5000,
        enable_caching=True,
        cache_ttl_seconds=300.0,
        cache_max_size=100,
        history_capacity=50,
        context_history_window=3,
    )


@pytest.fixture
def registry() -> CommandRegistry:
    """Registry with the built-in commands"""
    registry = CommandRegistry()
    register_default_commands(registry)
    return registry


@pytest.fixture
def add_to_cart_handler() -> RecordingHandler:
    return RecordingHandler("add_to_cart")


@pytest.fixture
def engine(test_settings, add_to_cart_handler) -> PipelineEngine:
    """Engine with a recording add_to_cart callback"""
    return PipelineEngine(
        settings=test_settings,
        handlers={"add_to_cart": add_to_cart_handler},
    )


@pytest.fixture
def sample_user_id() -> str:
    """Sample user ID for tests"""
    return "test_user_123"


@pytest.fixture
def menu_context(sample_user_id) -> dict:
    """Authenticated user on the menu page"""
    return {
        "current_page": "/menu",
        "cart_item_count": 0,
        "authenticated_user_id": sample_user_id,
        "session_id": "session-1",
    }


@pytest.fixture
def pizza_turn() -> ConversationTurn:
    """Earlier turn that ordered a pizza"""
    return ConversationTurn(
        timestamp=0.0,
        input="ich möchte eine pizza",
        intent="add_item",
        entities=(
            Entity(type=EntityType.QUANTITY, value=1, start=11, end=15),
            Entity(type=EntityType.PRODUCT, value="pizza", start=16, end=21, confidence=0.8),
        ),
        confidence=0.85,
        success=True,
        action="add_to_cart",
    )


@pytest.fixture
def make_handler():
    """Factory for recording command callbacks"""
    return RecordingHandler
