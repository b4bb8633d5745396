from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, Query

from turnstream.application.api.dependencies import get_memory_store
from turnstream.domain.context.memory.memory_store import MemoryStore

router = APIRouter(prefix="/api/v1/memories", tags=["memories"])


@router.get("/{user_id}")
async def list_memories(
    user_id: str,
    store: Annotated[MemoryStore, Depends(get_memory_store)]
):
    """File metadata and quota usage for one user"""
    files = await store.list_files(user_id)
    return {
        "files": [file.model_dump(mode="json", exclude={"content", "user_id"}) for file in files],
        "usage": await store.usage(user_id),
    }


@router.delete("/{user_id}")
async def delete_memory(
    user_id: str,
    store: Annotated[MemoryStore, Depends(get_memory_store)],
    path: str = Query(..., description="File or directory path under the memory root")
):
    result = await store.delete(user_id, path)
    if not result.success:
        status_code = 404 if result.error.startswith("File or directory not found") else 400
        raise HTTPException(status_code=status_code, detail=result.error)
    return {"deleted": path, "message": result.content}
