"""
WebSocket Handlers
==================

Interactive terminal attachment to a codetainer.

Protocol:
- first frame from the server is {"success": true} once attached, or an
  error envelope followed by a close with a 4xxx code
- then client text frames are terminal input and server text frames are
  terminal output
"""

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from .context import AppContext, get_websocket_context
from .errors import CodetainerError
from .schemas import ErrorBody, ErrorDetail, SuccessBody

logger = logging.getLogger(__name__)

# Close codes sent when an attach is refused
CLOSE_CODES = {
    "validation_error": 4000,
    "not_found": 4004,
    "conflict": 4009,
}
DEFAULT_CLOSE_CODE = 4000

router = APIRouter(prefix="/api/v1/codetainer", tags=["attach"])


async def _refuse(websocket: WebSocket, error: CodetainerError) -> None:
    """Send the error envelope and close the socket."""
    envelope = ErrorBody(error=ErrorDetail(**error.to_dict()))
    try:
        await websocket.send_text(envelope.model_dump_json())
        await websocket.close(code=CLOSE_CODES.get(error.kind, DEFAULT_CLOSE_CODE), reason=error.kind)
    except (RuntimeError, WebSocketDisconnect) as e:
        logger.debug(f"Client left before attach error was delivered: {e}")


@router.websocket("/{id}/attach")
async def attach_websocket(
    websocket: WebSocket,
    id: str,
    ctx: AppContext = Depends(get_websocket_context),
):
    """
    WebSocket endpoint attaching the client to a codetainer's terminal.

    The handler returns when either side ends the session.
    """
    await websocket.accept()

    try:
        connection = await ctx.sessions.attach(
            id,
            websocket,
            greeting=SuccessBody().model_dump_json(),
        )
    except CodetainerError as e:
        logger.warning(f"[WS] Attach to {id} refused: {e.message}")
        await _refuse(websocket, e)
        return

    await connection.wait_closed()
    logger.info(f"[WS] Session for {id} ended: {connection.termination_reason}")
