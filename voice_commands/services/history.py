"""Bounded per-session conversation history"""

from collections import deque
from typing import Deque, List

from voice_commands.services.pipeline.base import ConversationTurn


class ConversationHistory:
    """Most recent turns of one session, oldest first"""

    def __init__(self, capacity: int = 50):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._turns: Deque[ConversationTurn] = deque(maxlen=capacity)

    def append(self, turn: ConversationTurn) -> None:
        self._turns.append(turn)

    def recent(self, count: int) -> List[ConversationTurn]:
        """Last ``count`` turns, oldest first"""
        if count <= 0:
            return []
        return list(self._turns)[-count:]

    def snapshot(self) -> List[ConversationTurn]:
        return list(self._turns)

    def clear(self) -> None:
        self._turns.clear()

    def __len__(self) -> int:
        return len(self._turns)
