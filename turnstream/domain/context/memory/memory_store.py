from typing import Dict, List, Any, Optional, Callable
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
import structlog
from pydantic import BaseModel, Field, ValidationError

from turnstream.domain.context.memory.memory_paths import DEFAULT_NAMESPACE, is_under, validate_path
from turnstream.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)

MAX_FILE_SIZE_BYTES = 100 * 1024
MAX_TOTAL_SIZE_BYTES = 1024 * 1024
MAX_VIEW_CHARS = 50_000
TRUNCATION_NOTICE = "\n\n[Content truncated. Use view_range to paginate.]"


class MemoryCommand(str, Enum):
    """Memory tool commands"""
    VIEW = "view"
    CREATE = "create"
    STR_REPLACE = "str_replace"
    INSERT = "insert"
    DELETE = "delete"
    RENAME = "rename"


class MemoryToolInput(BaseModel):
    """Single input object accepted by the memory tool"""
    command: MemoryCommand
    path: Optional[str] = None
    view_range: Optional[List[int]] = Field(None, description="[start, end], 1-indexed; end -1 reads to the last line")
    file_text: Optional[str] = None
    old_str: Optional[str] = None
    new_str: Optional[str] = None
    insert_line: Optional[int] = None
    insert_text: Optional[str] = None
    old_path: Optional[str] = None
    new_path: Optional[str] = None


class SearchResultBlock(BaseModel):
    """Search-result content block that lets the model cite a memory file"""
    type: str = "search_result"
    source: str
    title: str
    content: List[Dict[str, str]]
    citations: Dict[str, bool] = Field(default_factory=lambda: {"enabled": True})


class MemoryToolResult(BaseModel):
    success: bool
    content: str = ""
    error: Optional[str] = None
    search_result: Optional[SearchResultBlock] = None

    @classmethod
    def failure(cls, error: str) -> "MemoryToolResult":
        return cls(success=False, error=error)


class MemoryFile(BaseModel):
    """One stored memory file"""
    user_id: str
    path: str
    content: str = ""
    size_bytes: int = 0
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    accessed_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def build(cls, user_id: str, path: str, content: str, now: datetime) -> "MemoryFile":
        return cls(
            user_id=user_id,
            path=path,
            content=content,
            size_bytes=byte_length(content),
            updated_at=now,
            accessed_at=now,
        )


def byte_length(text: str) -> int:
    return len(text.encode("utf-8"))


class MemoryBackend(ABC):
    """Persistence for memory files, unique on (user_id, path)"""

    @abstractmethod
    async def get(self, user_id: str, path: str) -> Optional[MemoryFile]:
        """Fetch one file"""

    @abstractmethod
    async def list(self, user_id: str, under: Optional[str] = None) -> List[MemoryFile]:
        """Files at or beneath `under` (all files when None), ordered by path"""

    @abstractmethod
    async def put(self, file: MemoryFile) -> None:
        """Insert or overwrite a file"""

    @abstractmethod
    async def delete(self, user_id: str, paths: List[str]) -> int:
        """Remove files, returning how many were removed"""

    @abstractmethod
    async def move(self, user_id: str, old_path: str, new_path: str, now: datetime) -> None:
        """Change a file's path, leaving its content untouched"""

    @abstractmethod
    async def touch(self, user_id: str, paths: List[str], now: datetime) -> None:
        """Update accessed_at"""

    @abstractmethod
    async def total_size(self, user_id: str, exclude_path: Optional[str] = None) -> int:
        """Sum of size_bytes across a user's files"""


class MemoryStore:
    """Path-addressed, quota-bounded file store exposed through the memory tool.

    Every failure is returned as ``MemoryToolResult(success=False)``; callers
    branch on ``success``. Mutations are not locked: concurrent writers to the
    same path resolve last-write-wins.
    """

    def __init__(
        self,
        backend: MemoryBackend,
        namespace: str = DEFAULT_NAMESPACE,
        max_file_bytes: int = MAX_FILE_SIZE_BYTES,
        max_total_bytes: int = MAX_TOTAL_SIZE_BYTES,
        max_view_chars: int = MAX_VIEW_CHARS,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.backend = backend
        self.namespace = namespace
        self.max_file_bytes = max_file_bytes
        self.max_total_bytes = max_total_bytes
        self.max_view_chars = max_view_chars
        self._clock = clock

    async def execute(self, user_id: str, tool_input: Any) -> MemoryToolResult:
        """Run one memory command from a raw tool input"""
        try:
            if not isinstance(tool_input, MemoryToolInput):
                tool_input = MemoryToolInput.model_validate(tool_input)
        except ValidationError as e:
            return MemoryToolResult.failure(f"Invalid memory command input: {e.errors()[0]['msg']}")

        command = tool_input.command
        try:
            result = await self._dispatch(user_id, tool_input)
        except Exception as e:
            logger.exception("Memory command failed", user_id=user_id, command=command.value)
            result = MemoryToolResult.failure(str(e) or type(e).__name__)

        agent_logger.log_memory_operation(
            user_id=user_id,
            command=command.value,
            path=tool_input.path or tool_input.old_path,
            success=result.success,
            error=result.error
        )
        metrics.increment_counter(f"memory.{command.value}", tags={"success": str(result.success).lower()})
        return result

    async def _dispatch(self, user_id: str, tool_input: MemoryToolInput) -> MemoryToolResult:
        command = tool_input.command
        if command == MemoryCommand.VIEW:
            return await self.view(user_id, tool_input.path or self.namespace, tool_input.view_range)
        if command == MemoryCommand.CREATE:
            return await self.create(user_id, tool_input.path, tool_input.file_text or "")
        if command == MemoryCommand.STR_REPLACE:
            return await self.str_replace(user_id, tool_input.path, tool_input.old_str, tool_input.new_str or "")
        if command == MemoryCommand.INSERT:
            return await self.insert(user_id, tool_input.path, tool_input.insert_line, tool_input.insert_text or "")
        if command == MemoryCommand.DELETE:
            return await self.delete(user_id, tool_input.path)
        return await self.rename(user_id, tool_input.old_path, tool_input.new_path)

    # Commands

    async def view(self, user_id: str, path: Optional[str] = None, view_range: Optional[List[int]] = None) -> MemoryToolResult:
        """Directory listing or line-numbered file content"""
        validation = validate_path(path or self.namespace, self.namespace)
        if not validation.valid:
            return MemoryToolResult.failure(validation.error)
        normalized = validation.normalized

        if validation.is_directory:
            return await self._view_directory(user_id, normalized)

        file = await self.backend.get(user_id, normalized)
        if file is None:
            # A path without a trailing slash may still name a directory
            if await self.backend.list(user_id, under=normalized):
                return await self._view_directory(user_id, normalized)
            return MemoryToolResult.failure(f"File not found: {normalized}")

        await self.backend.touch(user_id, [normalized], self._clock())

        lines = file.content.split("\n")
        first_line = 1
        if view_range is not None:
            if len(view_range) != 2:
                return MemoryToolResult.failure("view_range must be [start_line, end_line]")
            start, end = view_range
            if start < 1 or (end != -1 and end < start):
                return MemoryToolResult.failure(f"Invalid view_range: [{start}, {end}]")
            # end == -1 reads to the end of the file
            lines = lines[start - 1:] if end == -1 else lines[start - 1:end]
            first_line = start

        text = "\n".join(lines)
        numbered = "\n".join(f"{number:>6}\t{line}" for number, line in enumerate(lines, start=first_line))
        if len(numbered) > self.max_view_chars:
            numbered = numbered[:self.max_view_chars] + TRUNCATION_NOTICE
        if len(text) > self.max_view_chars:
            text = text[:self.max_view_chars]

        # Unnumbered text for citation support
        search_result = SearchResultBlock(
            source=normalized,
            title=normalized.rsplit("/", 1)[-1] or normalized,
            content=[{"type": "text", "text": text}],
        )
        return MemoryToolResult(success=True, content=numbered, search_result=search_result)

    async def _view_directory(self, user_id: str, directory: str) -> MemoryToolResult:
        files = await self.backend.list(user_id, under=directory)
        files = [file for file in files if file.path != directory]
        if not files:
            return MemoryToolResult(success=True, content=f"Directory: {directory}\n(empty)")

        await self.backend.touch(user_id, [file.path for file in files], self._clock())

        # Immediate children only; deeper files collapse into their top directory
        children = set()
        for file in files:
            relative = file.path[len(directory) + 1:]
            head, separator, _ = relative.partition("/")
            children.add(head + "/" if separator else head)

        listing = "\n".join(f"- {child}" for child in sorted(children))
        return MemoryToolResult(success=True, content=f"Directory: {directory}\n{listing}")

    async def create(self, user_id: str, path: Optional[str], file_text: str) -> MemoryToolResult:
        """Create or overwrite a file"""
        validation = validate_path(path, self.namespace)
        if not validation.valid:
            return MemoryToolResult.failure(validation.error)
        normalized = validation.normalized
        if normalized == self.namespace:
            return MemoryToolResult.failure("Cannot create file at root directory path")
        if validation.is_directory:
            return MemoryToolResult.failure(f"Cannot create file at directory path: {normalized}/")

        size = byte_length(file_text)
        if size > self.max_file_bytes:
            return MemoryToolResult.failure(
                f"File too large: {size} bytes exceeds limit of {self.max_file_bytes} bytes"
            )
        # Overwrites replace the old size, so this path is excluded from the total
        quota_error = await self._check_total(user_id, size, normalized)
        if quota_error:
            return MemoryToolResult.failure(quota_error)

        await self.backend.put(MemoryFile.build(user_id, normalized, file_text, self._clock()))
        return MemoryToolResult(success=True, content=f"File created: {normalized}")

    async def str_replace(self, user_id: str, path: Optional[str], old_str: Optional[str], new_str: str) -> MemoryToolResult:
        """Replace the first occurrence of `old_str`"""
        validation = validate_path(path, self.namespace)
        if not validation.valid:
            return MemoryToolResult.failure(validation.error)
        normalized = validation.normalized
        if not old_str:
            return MemoryToolResult.failure("old_str is required")

        file = await self.backend.get(user_id, normalized)
        if file is None:
            return MemoryToolResult.failure(f"File not found: {normalized}")
        if old_str not in file.content:
            return MemoryToolResult.failure(f'Text not found in file: "{old_str[:50]}..."')

        error = await self._write(user_id, normalized, file.content.replace(old_str, new_str, 1))
        if error:
            return MemoryToolResult.failure(error)
        return MemoryToolResult(success=True, content=f"Replaced text in: {normalized}")

    async def insert(self, user_id: str, path: Optional[str], insert_line: Optional[int], insert_text: str) -> MemoryToolResult:
        """Insert a line at a 1-indexed position, clamped to the end of the file"""
        validation = validate_path(path, self.namespace)
        if not validation.valid:
            return MemoryToolResult.failure(validation.error)
        normalized = validation.normalized

        file = await self.backend.get(user_id, normalized)
        if file is None:
            return MemoryToolResult.failure(f"File not found: {normalized}")
        if insert_line is None:
            return MemoryToolResult.failure("insert_line is required")
        if insert_line < 1:
            return MemoryToolResult.failure("Line number must be >= 1")

        lines = file.content.split("\n")
        lines.insert(min(insert_line - 1, len(lines)), insert_text)

        error = await self._write(user_id, normalized, "\n".join(lines))
        if error:
            return MemoryToolResult.failure(error)
        return MemoryToolResult(success=True, content=f"Inserted text at line {insert_line} in: {normalized}")

    async def delete(self, user_id: str, path: Optional[str]) -> MemoryToolResult:
        """Delete a file or every file under a directory"""
        validation = validate_path(path, self.namespace)
        if not validation.valid:
            return MemoryToolResult.failure(validation.error)
        normalized = validation.normalized
        if normalized == self.namespace:
            return MemoryToolResult.failure("Cannot delete root memories directory")

        matched = [file.path for file in await self.backend.list(user_id, under=normalized)]
        if not matched:
            return MemoryToolResult.failure(f"File or directory not found: {normalized}")

        deleted = await self.backend.delete(user_id, matched)
        if deleted == 1:
            return MemoryToolResult(success=True, content=f"Deleted: {normalized}")
        return MemoryToolResult(success=True, content=f"Deleted {deleted} files from: {normalized}")

    async def rename(self, user_id: str, old_path: Optional[str], new_path: Optional[str]) -> MemoryToolResult:
        """Move a file, or bulk-move a directory by rewriting the path prefix"""
        old_validation = validate_path(old_path, self.namespace)
        if not old_validation.valid:
            return MemoryToolResult.failure(f"Invalid old path: {old_validation.error}")
        new_validation = validate_path(new_path, self.namespace)
        if not new_validation.valid:
            return MemoryToolResult.failure(f"Invalid new path: {new_validation.error}")

        old = old_validation.normalized
        new = new_validation.normalized
        if old == self.namespace:
            return MemoryToolResult.failure("Cannot rename root memories directory")
        if new == self.namespace:
            return MemoryToolResult.failure("Cannot rename to root memories directory")

        existing = await self.backend.list(user_id, under=old)
        if not existing:
            return MemoryToolResult.failure(f"File or directory not found: {old}")
        if is_under(new, old) and new != old:
            return MemoryToolResult.failure(f"Cannot move {old} into itself")

        if new == old or await self.backend.get(user_id, new) is not None:
            return MemoryToolResult.failure(f"Target already exists: {new}")

        # Directory rename is a bulk move by prefix rewrite
        targets = [(file.path, new + file.path[len(old):]) for file in existing]
        for _, target in targets:
            if await self.backend.get(user_id, target) is not None:
                return MemoryToolResult.failure(f"Target already exists: {target}")

        now = self._clock()
        for source, target in targets:
            await self.backend.move(user_id, source, target, now)

        if len(targets) == 1:
            return MemoryToolResult(success=True, content=f"Renamed: {old} -> {new}")
        return MemoryToolResult(success=True, content=f"Renamed {len(targets)} files from {old} to {new}")

    # Surfaces outside the tool

    async def list_files(self, user_id: str) -> List[MemoryFile]:
        return await self.backend.list(user_id)

    async def usage(self, user_id: str) -> Dict[str, int]:
        files = await self.backend.list(user_id)
        return {
            "file_count": len(files),
            "total_bytes": sum(file.size_bytes for file in files),
            "max_file_bytes": self.max_file_bytes,
            "max_total_bytes": self.max_total_bytes,
        }

    # Helpers

    async def _write(self, user_id: str, path: str, content: str) -> Optional[str]:
        size = byte_length(content)
        if size > self.max_file_bytes:
            return f"Resulting file too large: {size} bytes exceeds limit of {self.max_file_bytes} bytes"
        quota_error = await self._check_total(user_id, size, path)
        if quota_error:
            return quota_error
        await self.backend.put(MemoryFile.build(user_id, path, content, self._clock()))
        return None

    async def _check_total(self, user_id: str, size: int, path: str) -> Optional[str]:
        new_total = await self.backend.total_size(user_id, exclude_path=path) + size
        if new_total > self.max_total_bytes:
            return (
                f"Total storage limit exceeded: {new_total} bytes would exceed limit of "
                f"{self.max_total_bytes} bytes. Delete some files first."
            )
        return None
