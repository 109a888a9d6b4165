"""OpenAI-backed intent classifier"""

import json
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from voice_commands.core.config import settings
from voice_commands.core.logging import get_logger
from voice_commands.services.pipeline.base import BaseIntentClassifier, IntentResult
from voice_commands.services.registry import CommandRegistry

logger = get_logger(__name__)


class OpenAIIntentClassifier(BaseIntentClassifier):
    """
    Classifies utterances with a chat completion model.

    The prompt lists the intents of the registry. Any failure (network,
    malformed JSON, unknown intent) is raised so the rule engine takes over.
    """

    def __init__(
        self,
        registry: CommandRegistry,
        client: Optional[AsyncOpenAI] = None,
        model: Optional[str] = None,
    ):
        self.registry = registry
        self.client = client or AsyncOpenAI(api_key=settings.openai_api_key)
        self.model = model or settings.openai_intent_model

    def build_prompt(self) -> str:
        intents = "\n".join(
            f"- {definition.intent}: {definition.name} ({definition.category})"
            for definition in self.registry.definitions()
        )
        return f"""Du klassifizierst Sprachbefehle eines Bestellsystems.

Verfügbare Intents:
{intents}
- unknown: keiner der obigen

Antworte nur mit JSON:
{{
  "intent": "intent_name",
  "confidence": 0.95,
  "alternatives": [{{"intent": "other_intent", "confidence": 0.3}}]
}}"""

    async def classify(self, text: str) -> IntentResult:
        """
        Classify normalized text

        Args:
            text: Normalized utterance

        Returns:
            Intent result
        """
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": self.build_prompt()},
                {"role": "user", "content": text},
            ],
            temperature=0.1,
            max_tokens=200,
            response_format={"type": "json_object"},
        )

        content = response.choices[0].message.content
        payload = self._parse(content)

        intent = payload["intent"]
        if intent != "unknown" and intent not in self.registry.intents():
            raise ValueError(f"Model returned unregistered intent: {intent}")

        alternatives = [
            (alt["intent"], alt.get("confidence", 0))
            for alt in payload.get("alternatives", [])
            if isinstance(alt, dict) and alt.get("intent")
        ]

        logger.info(
            "LLM intent classification",
            model=self.model,
            intent=intent,
            confidence=payload.get("confidence"),
        )

        return IntentResult(
            intent=intent,
            confidence=payload.get("confidence", 0),
            alternatives=alternatives,
        )

    @staticmethod
    def _parse(content: Any) -> Dict[str, Any]:
        if not content:
            raise ValueError("Empty model response")
        payload = json.loads(content)
        if not isinstance(payload, dict) or not isinstance(payload.get("intent"), str):
            raise ValueError("Model response has no intent")
        return payload
