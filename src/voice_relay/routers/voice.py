import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from ..services.voice_session import VoiceSession, VoiceSessionRegistry

router = APIRouter(tags=["Voice"])
logger = logging.getLogger(__name__)

VOICE_PATH = "/api/voice"


async def handle_connection(websocket: WebSocket, registry: VoiceSessionRegistry) -> None:
    """
    Main loop for handling a single client's WebSocket connection.

    Text frames and small binary frames carry JSON control messages; larger
    binary frames are raw audio and are only acknowledged. Each frame is
    handed to the session; utterances are answered in background turns so
    this loop keeps reading while a reply is being generated.
    """
    session: VoiceSession = await registry.connect(websocket)

    try:
        while True:
            message = await websocket.receive()
            message_type = message.get("type")

            if message_type == "websocket.disconnect":
                logger.info(
                    f"Voice client disconnected ({session.session_id}, code={message.get('code')})"
                )
                break

            if message_type != "websocket.receive":
                continue

            if message.get("text") is not None:
                await session.handle_frame(text=message["text"])
            elif message.get("bytes") is not None:
                await session.handle_frame(data=message["bytes"])

    except WebSocketDisconnect:
        logger.info(f"Voice client disconnected ({session.session_id})")
    except Exception as e:
        # The channel is presumed gone; no wire message is attempted.
        logger.error(f"Voice connection error for {session.session_id}: {e}")
    finally:
        await registry.disconnect(websocket)


@router.websocket(VOICE_PATH)
async def voice_connect(websocket: WebSocket):
    registry = getattr(websocket.app.state, "voice_sessions", None)
    if registry is None:
        logger.error("Voice session registry not initialized")
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR, reason="Server not ready")
        return

    await handle_connection(websocket, registry)
