# src/main.py

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from api.routes import router
from engine.errors import CommandRejected
from engine.scan_session import ScanSession
from engine.settings import SettingsStore
from tools.scanner_process import SubprocessScanRunner
import logging
import uuid


# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s %(message)s'
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.session = ScanSession(SettingsStore(), runner_factory=SubprocessScanRunner)
    logging.info(f"Automate Scanner started, database type: {app.state.session.settings.db_type}")
    yield
    session = app.state.session
    if session.scanning:
        try:
            await session.stop()
        except CommandRejected as e:
            logging.info(f"Waiting for the running scan to finish: {e.reason}")
        await session.wait()


app = FastAPI(title="Automate Scanner", lifespan=lifespan)


@app.middleware("http")
async def add_trace_id_and_log(request: Request, call_next):
    trace_id = str(uuid.uuid4())
    request.state.trace_id = trace_id
    logging.info(f"[trace_id={trace_id}] Incoming request: {request.method} {request.url}")
    try:
        response = await call_next(request)
    except Exception as exc:
        logging.error(f"[trace_id={trace_id}] Unhandled error: {exc}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Internal server error", "trace_id": trace_id}
        )
    response.headers["X-Trace-Id"] = trace_id
    return response

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    trace_id = getattr(request.state, "trace_id", str(uuid.uuid4()))
    logging.error(f"[trace_id={trace_id}] Exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": str(exc), "trace_id": trace_id}
    )

app.include_router(router)

