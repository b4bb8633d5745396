from typing import Dict, List, Optional
from abc import ABC, abstractmethod
import asyncio

from turnstream.domain.models.turn_state import Message, Turn


class TurnPersistence(ABC):
    """Receives finished turns; supplies history and the reusable container id"""

    @abstractmethod
    async def save_turn(self, turn: Turn, container_id: Optional[str]) -> None:
        """Persist a completed or failed turn"""

    @abstractmethod
    async def get_history(self, conversation_id: str) -> List[Message]:
        """Full message history as of the latest persisted turn"""

    @abstractmethod
    async def get_container_id(self, conversation_id: str) -> Optional[str]:
        """Execution container of the latest turn that reported one"""


class InMemoryTurnPersistence(TurnPersistence):
    """Manages finished turns across conversations"""

    def __init__(self):
        self.turns: Dict[str, List[Turn]] = {}
        self.container_ids: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def save_turn(self, turn: Turn, container_id: Optional[str]) -> None:
        async with self._lock:
            self.turns.setdefault(turn.conversation_id, []).append(turn.model_copy(deep=True))
            if container_id:
                self.container_ids[turn.conversation_id] = container_id

    async def get_history(self, conversation_id: str) -> List[Message]:
        async with self._lock:
            turns = self.turns.get(conversation_id, [])
            return list(turns[-1].messages) if turns else []

    async def get_container_id(self, conversation_id: str) -> Optional[str]:
        async with self._lock:
            return self.container_ids.get(conversation_id)

    async def get_turns(self, conversation_id: str) -> List[Turn]:
        async with self._lock:
            return list(self.turns.get(conversation_id, []))
