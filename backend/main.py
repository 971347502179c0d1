from fastapi import FastAPI, WebSocket, WebSocketDisconnect, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
import asyncio
import logging
from datetime import datetime
from typing import Optional

from capture.camera import CameraAcquisition
from capture.devices import OpenCVMediaDevices
from config.settings import Settings, get_settings
from detection.detector_feed import SimulatedDetectorFeed
from models.proctoring_models import CameraConstraints, DetectionSignal, EventKind, Report
from services.errors import CameraError, InvalidInput, SessionStateError
from services.gateway import BackendGateway
from services.report_builder import report_to_csv
from services.session_controller import SessionController
from utils.logger import ProctorLogger

settings = get_settings()

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Proctoring Console",
    description="Live proctoring session engine: camera, integrity events and reports",
    version="1.0.0"
)

# CORS middleware for the operator UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class StartSessionRequest(BaseModel):
    candidate_name: str


class IngestEventRequest(BaseModel):
    kind: EventKind
    timestamp: Optional[datetime] = None


def build_controller(
    settings: Settings,
    devices=None,
    gateway: Optional[BackendGateway] = None,
    proctor_logger: Optional[ProctorLogger] = None,
) -> SessionController:
    """Wire a controller from settings; collaborators can be swapped in"""
    camera = CameraAcquisition(
        devices or OpenCVMediaDevices(settings.CAMERA_DEVICE_INDEX),
        default_constraints=CameraConstraints(
            width=settings.CAMERA_WIDTH,
            height=settings.CAMERA_HEIGHT,
            facing_mode=settings.CAMERA_FACING_MODE,
        ),
        init_timeout=settings.CAMERA_INIT_TIMEOUT_SECONDS,
    )

    feed_factory = None
    if settings.SIMULATE_DETECTIONS:
        feed_factory = lambda: SimulatedDetectorFeed(
            interval=settings.TICK_INTERVAL_SECONDS,
            probability=settings.SIMULATED_EVENT_PROBABILITY,
        )

    return SessionController(
        gateway=gateway or BackendGateway(settings.BACKEND_URL, timeout=settings.BACKEND_TIMEOUT_SECONDS),
        camera=camera,
        feed_factory=feed_factory,
        proctor_logger=proctor_logger or ProctorLogger(settings.LOG_DIR),
        decay_window=settings.DECAY_WINDOW_SECONDS,
        tick_interval=settings.TICK_INTERVAL_SECONDS,
    )


def get_controller() -> SessionController:
    controller = getattr(app.state, "controller", None)
    if controller is None:
        raise HTTPException(status_code=503, detail="Console is not initialised")
    return controller


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse(status_code=400, content={"error": "InvalidInput", "message": str(exc)})


@app.exception_handler(CameraError)
async def camera_error_handler(request: Request, exc: CameraError):
    return JSONResponse(status_code=409, content={"error": exc.code, "message": exc.remediation})


@app.exception_handler(SessionStateError)
async def session_state_handler(request: Request, exc: SessionStateError):
    return JSONResponse(status_code=409, content={"error": "SessionStateError", "message": str(exc)})


@app.on_event("startup")
async def startup_event():
    """Wire the session controller on startup"""
    logger.info("🚀 Starting Proctoring Console...")

    if getattr(app.state, "controller", None) is None:
        app.state.controller = build_controller(settings)

    status = await app.state.controller.gateway.health_check()
    logger.info(f"Session store status: {status.get('status', 'unknown')}")


@app.on_event("shutdown")
async def shutdown_event():
    """Never leave the camera held when the process exits"""
    controller = getattr(app.state, "controller", None)
    if controller is not None:
        await controller.shutdown()
    logger.info("👋 Proctoring Console stopped")


@app.get("/")
async def root():
    controller = get_controller()
    return {
        "message": "Proctoring Console",
        "status": "running",
        "session_state": controller.state.value,
        "camera_status": controller.camera.status.value,
    }


@app.get("/health")
async def health_check():
    controller = get_controller()
    backend = await controller.gateway.health_check()
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "backend": backend.get("status", "unknown"),
    }


@app.get("/session")
async def get_session():
    return get_controller().snapshot()


@app.post("/session/start")
async def start_session(request: StartSessionRequest):
    session = await get_controller().start(request.candidate_name)
    return session


@app.post("/session/retry")
async def retry_session():
    session = await get_controller().retry()
    return session


@app.post("/session/stop", response_model=Report)
async def stop_session():
    return await get_controller().stop()


@app.post("/session/reset")
async def reset_session():
    controller = get_controller()
    await controller.reset()
    return controller.snapshot()


@app.post("/session/events")
async def ingest_event(request: IngestEventRequest):
    """Entry point for an external detector"""
    event = get_controller().ingest(DetectionSignal(kind=request.kind, timestamp=request.timestamp))
    return event


@app.get("/session/report", response_model=Report)
async def get_current_report():
    report = get_controller().report
    if report is None:
        raise HTTPException(status_code=404, detail="No report for the current session")
    return report


async def _load_report(session_id: str) -> Report:
    controller = get_controller()
    if controller.report is not None and controller.report.session_id == session_id:
        return controller.report

    stored = None
    if controller.proctor_logger is not None:
        stored = await controller.proctor_logger.get_report(session_id)
    if not stored:
        raise HTTPException(status_code=404, detail="Session report not found")
    return Report.model_validate(stored)


@app.get("/export/{session_id}/json")
async def export_session_json(session_id: str):
    """Export session report as JSON file"""
    report = await _load_report(session_id)
    filename = f"session_report_{session_id}.json"

    return Response(
        content=report.model_dump_json(indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@app.get("/export/{session_id}/csv")
async def export_session_csv(session_id: str):
    """Export session events as CSV file"""
    report = await _load_report(session_id)
    filename = f"session_events_{session_id}.csv"

    return Response(
        content=report_to_csv(report),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@app.websocket("/ws/status")
async def status_websocket(websocket: WebSocket):
    """Push the live snapshot to the console once per tick"""
    await websocket.accept()
    logger.info("🔌 New status WebSocket connection")

    try:
        while True:
            snapshot = get_controller().snapshot()
            await websocket.send_text(snapshot.model_dump_json())
            await asyncio.sleep(settings.TICK_INTERVAL_SECONDS)
    except WebSocketDisconnect:
        logger.info("🔌 Status WebSocket disconnected")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=False,
        log_level=settings.LOG_LEVEL.lower()
    )
