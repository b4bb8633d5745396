from typing import Annotated, List, Optional
import asyncio
import json
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
import structlog

from turnstream.application.api.dependencies import get_orchestrator
from turnstream.domain.errors import TurnInProgressError
from turnstream.domain.models.turn_state import AccumulatedState, Attachment, Turn
from turnstream.domain.orchestration.core.turn_orchestrator import TurnOrchestrator

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/agent", tags=["agent"])


class TurnSubmission(BaseModel):
    """Body of a turn request"""
    conversation_id: str
    content: str
    user_id: Optional[str] = Field(None, description="Binds the memory tool to this user")
    attachments: List[Attachment] = Field(default_factory=list)
    selected_toolkits: Optional[List[str]] = None


def _ndjson(record: dict) -> bytes:
    return (json.dumps(record, default=str) + "\n").encode("utf-8")


def turn_complete_record(turn: Turn) -> dict:
    return {
        "type": "turn_complete",
        "turn_id": turn.id,
        "status": turn.status.value,
        "cancelled": turn.cancelled,
        "message": turn.messages[-1].model_dump(mode="json") if turn.messages else None,
    }


# Streams one NDJSON snapshot per applied delta, then a completion record
@router.post("/turn")
async def submit_turn(
    submission: TurnSubmission,
    orchestrator: Annotated[TurnOrchestrator, Depends(get_orchestrator)]
):
    queue: asyncio.Queue = asyncio.Queue()

    async def on_snapshot(turn: Turn, state: AccumulatedState):
        await queue.put({"type": "turn_snapshot", "turn_id": turn.id, "payload": state.to_payload()})

    try:
        handle = await orchestrator.submit_turn(
            submission.conversation_id,
            submission.content,
            attachments=submission.attachments,
            user_id=submission.user_id,
            on_snapshot=on_snapshot,
            selected_toolkits=submission.selected_toolkits,
        )
    except TurnInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))

    async def wait_for_turn():
        try:
            turn = await handle.result()
            await queue.put(turn_complete_record(turn))
        except Exception as e:
            logger.exception("Turn failed", conversation_id=submission.conversation_id)
            await queue.put({"type": "error", "turn_id": handle.turn.id, "message": f"Turn failed: {e}"})
        finally:
            # End of stream marker, always sent so the body generator returns
            await queue.put(None)

    async def body():
        waiter = asyncio.create_task(wait_for_turn())
        try:
            while True:
                record = await queue.get()
                if record is None:
                    break
                yield _ndjson(record)
        finally:
            if not handle.done:
                logger.info("Client went away, cancelling turn", conversation_id=submission.conversation_id)
                handle.cancel()
            if not waiter.done():
                waiter.cancel()

    return StreamingResponse(body(), media_type="application/x-ndjson")


@router.post("/turn/{conversation_id}/cancel")
async def cancel_turn(
    conversation_id: str,
    orchestrator: Annotated[TurnOrchestrator, Depends(get_orchestrator)]
):
    return {"conversation_id": conversation_id, "cancelled": orchestrator.cancel_turn(conversation_id)}
