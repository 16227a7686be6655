# src/api/routes.py
from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from api.schemas import CommandResult, SocketMessage
from engine.errors import CommandRejected
from engine.scan_session import ScanSession
import logging

router = APIRouter()


def get_session(request: Request) -> ScanSession:
    return request.app.state.session


@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.get(
    "/scan/status",
    summary="Current scan session snapshot",
    response_description="Status, logs and progress of the current or last scan",
    tags=["Scan"],
    response_model=dict,
)
def scan_status(request: Request):
    return get_session(request).snapshot()


@router.post(
    "/scan/start",
    summary="Start a scan",
    response_description="Start acknowledgement",
    tags=["Scan"],
    response_model=CommandResult,
    responses={
        200: {"description": "Scan started"},
        409: {"description": "A scan is already running"}
    },
)
async def start_scan(request: Request):
    session = get_session(request)
    try:
        await session.start()
    except CommandRejected as e:
        return JSONResponse(
            status_code=409,
            content={"success": False, "status": session.state.status.value, "error": str(e)}
        )
    return {"success": True, "status": session.state.status.value}


@router.post(
    "/scan/stop",
    summary="Request cancellation of the running scan",
    response_description="Stop acknowledgement; the scan ends once the scanner exits",
    tags=["Scan"],
    response_model=CommandResult,
    responses={
        200: {"description": "Stop requested"},
        409: {"description": "No scan is running"}
    },
)
async def stop_scan(request: Request):
    session = get_session(request)
    try:
        await session.stop()
    except CommandRejected as e:
        return JSONResponse(
            status_code=409,
            content={"success": False, "status": session.state.status.value, "error": str(e)}
        )
    return {"success": True, "status": session.state.status.value}


@router.get("/settings", tags=["Settings"], response_model=dict)
def get_settings(request: Request):
    return get_session(request).settings.to_wire()


@router.websocket("/ws")
async def telemetry(websocket: WebSocket):
    """
    Persistent channel per observer. Receives an `init` resync on connect, then
    every broadcast; accepts start-scan, stop-scan and change-settings.
    """
    session: ScanSession = websocket.app.state.session
    await websocket.accept()
    await session.attach(websocket)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = SocketMessage.model_validate_json(raw)
            except ValidationError as e:
                logging.error(f"[ws] Ignoring malformed message: {e}")
                continue
            await handle_message(session, websocket, message)
    except WebSocketDisconnect:
        pass
    finally:
        session.detach(websocket)


async def handle_message(session: ScanSession, websocket: WebSocket, message: SocketMessage):
    broadcaster = session.broadcaster
    if message.event == "change-settings":
        try:
            await session.change_settings(message.data or {})
            changed = True
        except (CommandRejected, ValidationError, OSError) as e:
            logging.error(f"[ws] Settings change refused: {e}")
            changed = False
        await broadcaster.send(websocket, "settings-changed", changed)
        return
    try:
        if message.event == "start-scan":
            await session.start()
        elif message.event == "stop-scan":
            await session.stop()
        else:
            raise CommandRejected(message.event, "unknown event")
    except CommandRejected as e:
        logging.info(f"[ws] {e}")
        await broadcaster.send(websocket, "error", {"command": e.command, "message": e.reason})
