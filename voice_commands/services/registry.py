"""Command registry - built-in and per-user command definitions"""

from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from voice_commands.core.logging import get_logger
from voice_commands.services.pipeline.base import CommandDefinition

logger = get_logger(__name__)


class CommandRegistry:
    """
    Holds command definitions for the lifetime of a pipeline engine.

    Responsibilities:
    - Store global definitions by unique name
    - Keep a per-intent lookup table in registration order
    - Keep per-user custom definitions, checked before global ones

    Definitions are append-only; there is no removal API.
    """

    def __init__(self):
        self._commands: Dict[str, CommandDefinition] = {}
        self._by_intent: Dict[str, List[CommandDefinition]] = {}
        self._groups: Dict[str, List[str]] = {}
        self._custom: Dict[str, Dict[str, CommandDefinition]] = {}

    def register(self, definition: CommandDefinition) -> CommandDefinition:
        """
        Register a global command

        Args:
            definition: Command definition with a unique name

        Returns:
            The stored definition
        """
        if definition.name in self._commands:
            raise ValueError(f"Command already registered: {definition.name}")

        self._commands[definition.name] = definition
        self._by_intent.setdefault(definition.intent, []).append(definition)

        logger.debug(
            "Command registered",
            command=definition.name,
            intent=definition.intent,
            category=definition.category,
        )
        return definition

    def register_group(
        self,
        group_name: str,
        definitions: Iterable[CommandDefinition],
    ) -> List[CommandDefinition]:
        """Register several commands under a named group"""
        stored = []
        for definition in definitions:
            if definition.group != group_name:
                definition = replace(definition, group=group_name)
            stored.append(self.register(definition))

        self._groups.setdefault(group_name, []).extend(d.name for d in stored)
        return stored

    def register_custom(self, user_id: str, definition: CommandDefinition) -> CommandDefinition:
        """
        Register a command visible only to one user

        Args:
            user_id: Owner of the command
            definition: Command definition

        Returns:
            The stored definition, marked as custom
        """
        if not user_id:
            raise ValueError("Custom commands require a user id")

        custom = replace(definition, is_custom=True, user_id=user_id)
        self._custom.setdefault(user_id, {})[custom.name] = custom

        logger.info(
            "Custom command registered",
            user_id=user_id,
            command=custom.name,
            intent=custom.intent,
        )
        return custom

    def find_by_intent(
        self,
        intent: Optional[str],
        user_id: Optional[str] = None,
    ) -> Optional[CommandDefinition]:
        """
        Find the command for an intent

        Per-user definitions win over global ones. Within each namespace the
        earliest registered definition wins.
        """
        if not intent:
            return None

        if user_id and user_id in self._custom:
            for definition in self._custom[user_id].values():
                if definition.intent == intent:
                    return definition

        candidates = self._by_intent.get(intent)
        return candidates[0] if candidates else None

    def get(self, name: str) -> Optional[CommandDefinition]:
        return self._commands.get(name)

    def definitions(self) -> List[CommandDefinition]:
        """Global definitions in registration order"""
        return list(self._commands.values())

    def custom_definitions(self, user_id: Optional[str]) -> List[CommandDefinition]:
        if not user_id:
            return []
        return list(self._custom.get(user_id, {}).values())

    def candidates(self, user_id: Optional[str] = None) -> List[CommandDefinition]:
        """Definitions considered by the classifier, custom ones first"""
        return self.custom_definitions(user_id) + self.definitions()

    def groups(self) -> Dict[str, List[str]]:
        return {name: list(commands) for name, commands in self._groups.items()}

    def intents(self) -> List[str]:
        return list(self._by_intent.keys())

    def __len__(self) -> int:
        return len(self._commands)

    def __contains__(self, name: str) -> bool:
        return name in self._commands
