"""Tests for intent classification"""

import pytest

from voice_commands.services.pipeline.base import (
    UNKNOWN_INTENT,
    BaseIntentClassifier,
    CommandDefinition,
    IntentResult,
)
from voice_commands.services.pipeline.intent_classifier import IntentClassifier


class StaticClassifier(BaseIntentClassifier):
    def __init__(self, result):
        self.result = result

    async def classify(self, text):
        return self.result


class FailingClassifier(BaseIntentClassifier):
    async def classify(self, text):
        raise ConnectionError("model offline")


class TestIntentClassifier:
    """Test IntentClassifier"""

    @pytest.fixture
    def classifier(self, registry):
        return IntentClassifier(registry)

    def test_add_item(self, classifier):
        result = classifier.classify_by_patterns("ich möchte zwei pizza")
        assert result.intent == "add_item"
        assert result.confidence == pytest.approx(0.85)
        assert result.command_name == "add_to_cart"

    def test_alternatives_exclude_winner(self, classifier):
        result = classifier.classify_by_patterns("ich möchte eine grosse pizza")
        assert result.intent == "add_item"
        assert result.alternatives[0] == ("modify_item", pytest.approx(0.8))
        assert all(intent != "add_item" for intent, _ in result.alternatives)

    def test_unknown_text(self, classifier):
        result = classifier.classify_by_patterns("xzy qqq")
        assert result.intent == UNKNOWN_INTENT
        assert result.confidence == 0.0
        assert result.alternatives == []

    def test_ties_go_to_earlier_registration(self, classifier):
        # Only the verb pattern of both navigation commands matches
        result = classifier.classify_by_patterns("zeig mir alles")
        assert result.intent == "navigate_menu"
        assert result.confidence == pytest.approx(0.45)
        assert result.alternatives[0] == ("navigate_cart", pytest.approx(0.45))

    def test_low_confidence_alternatives(self, classifier):
        result = classifier.classify_by_patterns("zeig mir alles")
        assert classifier.low_confidence_alternatives(result) == [
            ("navigate_cart", pytest.approx(0.45)),
        ]

    def test_custom_commands_considered_first(self, registry):
        registry.register_custom("u1", CommandDefinition(
            name="my_help",
            patterns=(r"\bhilfe\b",),
            intent="help",
            confidence=0.9,
        ))
        classifier = IntentClassifier(registry)

        assert classifier.classify_by_patterns("hilfe", "u1").command_name == "my_help"
        assert classifier.classify_by_patterns("hilfe", "u2").command_name == "help"

    @pytest.mark.asyncio
    async def test_delegate_result_used(self, registry):
        delegate = StaticClassifier({"intent": "help", "confidence": 1.7, "alternatives": []})
        result = await IntentClassifier(registry, delegate).classify("irgendwas")
        assert result.intent == "help"
        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_delegate_intent_result_passthrough(self, registry):
        expected = IntentResult(intent="cancel", confidence=0.6)
        result = await IntentClassifier(registry, StaticClassifier(expected)).classify("stopp")
        assert result is expected

    @pytest.mark.asyncio
    async def test_delegate_failure_falls_back_to_rules(self, registry):
        result = await IntentClassifier(registry, FailingClassifier()).classify("hilfe")
        assert result.intent == "help"

    @pytest.mark.asyncio
    async def test_malformed_delegate_result_falls_back(self, registry):
        result = await IntentClassifier(registry, StaticClassifier("help")).classify("hilfe")
        assert result.intent == "help"
        assert result.command_name == "help"
