"""Intent classifier - determines what the user wants to do"""

from typing import Any, Dict, List, Optional, Tuple

from voice_commands.core.logging import get_logger
from voice_commands.services.pipeline.base import (
    UNKNOWN_INTENT,
    BaseIntentClassifier,
    ConfidenceLevel,
    IntentResult,
)
from voice_commands.services.registry import CommandRegistry

logger = get_logger(__name__)

MAX_ALTERNATIVES = 3


class IntentClassifier:
    """
    Classifies normalized text into a registered intent.

    Responsibilities:
    - Score every registered command against the text (rule engine)
    - Report the next best distinct intents as alternatives
    - Delegate to an external classifier when one is configured, falling
      back to the rule engine when it fails
    """

    def __init__(
        self,
        registry: CommandRegistry,
        delegate: Optional[BaseIntentClassifier] = None,
    ):
        self.registry = registry
        self.delegate = delegate

    async def classify(self, text: str, user_id: Optional[str] = None) -> IntentResult:
        """
        Classify intent

        Args:
            text: Normalized text
            user_id: User whose custom commands are considered first

        Returns:
            Intent result with confidence clamped to [0, 1]
        """
        if self.delegate is not None:
            try:
                result = self._coerce(await self.delegate.classify(text))
                logger.info(
                    "Delegate intent classification",
                    intent=result.intent,
                    confidence=result.confidence,
                )
                return result
            except Exception as e:
                logger.debug("Delegate classifier failed, using rules", error=str(e))

        return self.classify_by_patterns(text, user_id)

    def classify_by_patterns(self, text: str, user_id: Optional[str] = None) -> IntentResult:
        """
        Rule-based classification

        Confidence of a command is its weight times the share of its patterns
        found in the text. Ties go to the earlier registered command.
        """
        best_intent = UNKNOWN_INTENT
        best_confidence = 0.0
        best_command: Optional[str] = None
        # intent -> (confidence, registration index)
        per_intent: Dict[str, Tuple[float, int]] = {}

        for index, definition in enumerate(self.registry.candidates(user_id)):
            confidence = definition.score(text)
            if confidence <= 0:
                continue

            if confidence > best_confidence:
                best_intent = definition.intent
                best_confidence = confidence
                best_command = definition.name

            known = per_intent.get(definition.intent)
            if known is None or confidence > known[0]:
                per_intent[definition.intent] = (confidence, known[1] if known else index)

        ranked = sorted(
            (
                (intent, confidence, index)
                for intent, (confidence, index) in per_intent.items()
                if intent != best_intent
            ),
            key=lambda item: (-item[1], item[2]),
        )
        alternatives = [(intent, confidence) for intent, confidence, _ in ranked[:MAX_ALTERNATIVES]]

        logger.debug(
            "Pattern intent classification",
            intent=best_intent,
            confidence=best_confidence,
            alternatives=len(alternatives),
        )

        return IntentResult(
            intent=best_intent,
            confidence=best_confidence,
            alternatives=alternatives,
            command_name=best_command,
        )

    @staticmethod
    def low_confidence_alternatives(result: IntentResult) -> List[Tuple[str, float]]:
        """Alternatives that matched, but weakly"""
        return [
            (intent, confidence)
            for intent, confidence in result.alternatives
            if 0 < confidence < ConfidenceLevel.LOW
        ]

    @staticmethod
    def _coerce(result: Any) -> IntentResult:
        """Accept IntentResult or a plain dict from external classifiers"""
        if isinstance(result, IntentResult):
            return result
        if isinstance(result, dict) and result.get("intent"):
            alternatives = [
                (alt["intent"], alt.get("confidence", 0))
                if isinstance(alt, dict)
                else (alt[0], alt[1])
                for alt in result.get("alternatives", [])
            ]
            return IntentResult(
                intent=str(result["intent"]),
                confidence=result.get("confidence", 0),
                alternatives=alternatives,
            )
        raise TypeError(f"Unsupported classifier result: {type(result).__name__}")
