from typing import Dict, Any
import asyncio
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
import structlog

from .schema.events import CancelEvent, EventType, TurnCompleteEvent, TurnSnapshotEvent, UserMessage
from turnstream.application.api.dependencies import AppServices
from turnstream.domain.errors import TurnInProgressError
from turnstream.domain.models.turn_state import AccumulatedState, Turn

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.websocket("/ws/agent/{user_id}/{conversation_id}")
async def agent_websocket(
    websocket: WebSocket,
    user_id: str,
    conversation_id: str,
):
    """Main WebSocket endpoint for agent interaction"""

    services: AppServices = websocket.app.state.services
    connection_manager = services.connection_manager
    session_id = conversation_id

    await connection_manager.connect(websocket, session_id, user_id)
    watchers = set()

    try:
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                await connection_manager.send_error(session_id, "Invalid event: frame is not valid JSON", "invalid_event")
                continue

            if not isinstance(data, dict):
                await connection_manager.send_error(session_id, "Invalid event: expected a JSON object", "invalid_event")
                continue

            try:
                event_type = data.get("type")

                if event_type == EventType.USER_MESSAGE:
                    watcher = await process_user_message(services, session_id, user_id, UserMessage(**data))
                    if watcher is not None:
                        watchers.add(watcher)
                        watcher.add_done_callback(watchers.discard)

                elif event_type == EventType.CANCEL:
                    CancelEvent(**data)
                    cancelled = services.orchestrator.cancel_turn(conversation_id)
                    logger.info("Cancel requested", session_id=session_id, cancelled=cancelled)

                else:
                    await connection_manager.send_error(session_id, f"Unsupported event type: {event_type}")

            except ValidationError as e:
                await connection_manager.send_error(session_id, f"Invalid event: {e.errors()[0]['msg']}", "invalid_event")

    except WebSocketDisconnect:
        logger.info("Client disconnected", session_id=session_id)
    finally:
        services.orchestrator.cancel_turn(conversation_id)
        for watcher in list(watchers):
            watcher.cancel()
        await connection_manager.disconnect(session_id)


async def process_user_message(
    services: AppServices,
    session_id: str,
    user_id: str,
    message: UserMessage
):
    """Start a turn and forward its snapshots; returns the completion watcher task"""

    connection_manager = services.connection_manager

    async def on_snapshot(turn: Turn, state: AccumulatedState):
        await connection_manager.send_event(
            session_id,
            TurnSnapshotEvent(turn_id=turn.id, payload=state.to_payload(), session_id=session_id)
        )

    try:
        handle = await services.orchestrator.submit_turn(
            session_id,
            message.content,
            attachments=message.attachments,
            user_id=user_id,
            on_snapshot=on_snapshot,
            selected_toolkits=message.selected_toolkits,
        )
    except TurnInProgressError as e:
        await connection_manager.send_error(session_id, str(e), "turn_in_progress")
        return None

    async def report_completion():
        try:
            turn = await handle.result()
        except Exception as e:
            # The turn task itself raised (persistence or post-processing), not a provider failure
            logger.exception("Turn failed", session_id=session_id)
            await connection_manager.send_error(session_id, f"Turn failed: {e}", "turn_failed")
            return
        await connection_manager.send_event(session_id, completion_event(turn, session_id))

    return asyncio.create_task(report_completion())


def completion_event(turn: Turn, session_id: str) -> TurnCompleteEvent:
    last: Dict[str, Any] = turn.messages[-1].model_dump(mode="json") if turn.messages else None
    return TurnCompleteEvent(
        turn_id=turn.id,
        status=turn.status.value,
        cancelled=turn.cancelled,
        message=last,
        session_id=session_id,
    )
