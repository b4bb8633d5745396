from typing import Dict, List, Optional, Tuple
from datetime import datetime
import asyncio

from turnstream.domain.context.memory.memory_paths import is_under
from turnstream.domain.context.memory.memory_store import MemoryBackend, MemoryFile


class InMemoryMemoryBackend(MemoryBackend):
    """Process-local memory files keyed by (user_id, path)"""

    def __init__(self):
        self.files: Dict[Tuple[str, str], MemoryFile] = {}
        self._lock = asyncio.Lock()

    async def get(self, user_id: str, path: str) -> Optional[MemoryFile]:
        async with self._lock:
            file = self.files.get((user_id, path))
            return file.model_copy() if file else None

    async def list(self, user_id: str, under: Optional[str] = None) -> List[MemoryFile]:
        async with self._lock:
            files = [
                file.model_copy() for (owner, path), file in self.files.items()
                if owner == user_id and (under is None or is_under(path, under))
            ]
        return sorted(files, key=lambda file: file.path)

    async def put(self, file: MemoryFile) -> None:
        async with self._lock:
            self.files[(file.user_id, file.path)] = file.model_copy()

    async def delete(self, user_id: str, paths: List[str]) -> int:
        async with self._lock:
            removed = 0
            for path in paths:
                if self.files.pop((user_id, path), None) is not None:
                    removed += 1
            return removed

    async def move(self, user_id: str, old_path: str, new_path: str, now: datetime) -> None:
        async with self._lock:
            file = self.files.pop((user_id, old_path), None)
            if file is None:
                return
            self.files[(user_id, new_path)] = file.model_copy(
                update={"path": new_path, "updated_at": now, "accessed_at": now}
            )

    async def touch(self, user_id: str, paths: List[str], now: datetime) -> None:
        async with self._lock:
            for path in paths:
                file = self.files.get((user_id, path))
                if file is not None:
                    file.accessed_at = now

    async def total_size(self, user_id: str, exclude_path: Optional[str] = None) -> int:
        async with self._lock:
            return sum(
                file.size_bytes for (owner, path), file in self.files.items()
                if owner == user_id and path != exclude_path
            )
