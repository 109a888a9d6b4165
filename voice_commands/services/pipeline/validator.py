"""Command validator - matches an intent to a registered command"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from voice_commands.core.logging import get_logger
from voice_commands.services.pipeline.base import (
    CommandDefinition,
    ConversationTurn,
    Entity,
)
from voice_commands.services.registry import CommandRegistry

logger = get_logger(__name__)


@dataclass
class ValidationFailure:
    """No command could be matched"""
    message: str


@dataclass
class ValidatedCommand:
    """Matched command plus entities resolved along the way"""
    command: CommandDefinition
    resolved_entities: List[Entity] = field(default_factory=list)
    missing_entities: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class CommandValidator:
    """
    Validates a classified intent against the command registry.

    Responsibilities:
    - Look up the command for the intent (custom commands first)
    - Fill missing required entities from recent conversation turns
    - Report entities that could not be resolved as warnings
    """

    def __init__(self, registry: CommandRegistry, history_window: int = 3):
        self.registry = registry
        self.history_window = history_window

    def validate(
        self,
        intent: Optional[str],
        entities: Sequence[Entity],
        user_id: Optional[str] = None,
        history: Sequence[ConversationTurn] = (),
    ) -> Union[ValidatedCommand, ValidationFailure]:
        """
        Validate intent and entities

        Args:
            intent: Classified intent
            entities: Entities extracted from the current utterance
            user_id: User identifier for custom command lookup
            history: Session turns, oldest first

        Returns:
            ValidatedCommand or ValidationFailure
        """
        command = self.registry.find_by_intent(intent, user_id)
        if command is None:
            logger.info("No command for intent", intent=intent, user_id=user_id)
            return ValidationFailure(message=f"No command found for intent: {intent}")

        present = {entity.type for entity in entities}
        missing = [t for t in command.required_entities if t not in present]

        validated = ValidatedCommand(command=command)
        if not missing:
            return validated

        recent = list(history)[-self.history_window:] if self.history_window else []

        for entity_type in missing:
            resolved = self._resolve_from_history(entity_type, recent)
            if resolved is not None:
                validated.resolved_entities.append(resolved)
                validated.warnings.append(
                    f"Resolved {entity_type} from conversation context: {resolved.value}"
                )
            else:
                validated.missing_entities.append(entity_type)

        if validated.missing_entities:
            validated.warnings.append(
                f"Missing required entities: {', '.join(validated.missing_entities)}"
            )

        logger.info(
            "Command validated with missing entities",
            command=command.name,
            resolved=[e.type for e in validated.resolved_entities],
            missing=validated.missing_entities,
        )

        return validated

    @staticmethod
    def _resolve_from_history(
        entity_type: str,
        recent: Sequence[ConversationTurn],
    ) -> Optional[Entity]:
        """Most recent entity of a type, searching newest turn first"""
        for turn in reversed(recent):
            entity = turn.find_entity(entity_type)
            if entity is not None:
                return entity.from_context()
        return None
