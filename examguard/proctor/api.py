"""
Proctoring API - FastAPI endpoints for exam integrity monitoring

Endpoints:
- POST /api/proctor/start - Start a proctoring session
- POST /api/proctor/stream - Stream a frame for processing
- POST /api/proctor/environment - Report a fullscreen or tab-visibility change
- POST /api/proctor/reinitialize - Rebuild visual proctoring for a session
- POST /api/proctor/stop - Stop session and get results
- GET /api/proctor/status/{session_id} - Get session status
- GET /api/proctor/models-status - Check model availability
- GET /api/proctor/health - Router health
"""

import asyncio
import base64
import binascii
import logging
from functools import lru_cache
from typing import Any, Dict, List, Literal, Optional, Set

import cv2
import numpy as np
from fastapi import APIRouter, BackgroundTasks, HTTPException
from pydantic import BaseModel, Field

from ..config import settings
from .camera import FrameSource
from .detectors import DlibFaceDetector
from .errors import SessionTerminatedError
from .monitoring import ClientReportedFullscreen
from .session import ProctorSession
from .sink import SubmissionRepository, ViolationSink
from .types import DetectionFrame, FacingMode
from .utils.annotate import draw_detection_results

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/proctor", tags=["Proctoring"])

# In-memory session storage (one process serves a session for its lifetime)
_sessions: Dict[str, ProctorSession] = {}

# Shutdowns of sessions that terminated themselves
_closing: Set[asyncio.Task] = set()


@lru_cache(maxsize=1)
def get_repository() -> SubmissionRepository:
    """Shared submission repository, schema created on first use"""
    repository = SubmissionRepository(settings.DATABASE_URL)
    repository.init_schema()
    return repository


def _get_session(session_id: str, require_active: bool = True) -> ProctorSession:
    session = _sessions.get(session_id)

    if not session:
        raise HTTPException(status_code=404, detail="Session not found")

    if require_active and (not session.is_active or session.is_terminated):
        raise HTTPException(status_code=400, detail="Session is not active")

    return session


# ============== Request/Response Models ==============

class StartSessionRequest(BaseModel):
    """Request to start a proctoring session"""
    assessment_id: str = Field(..., description="ID of the assessment")
    student_id: str = Field(..., description="ID of the student")
    use_local_camera: bool = Field(False, description="Capture from a camera attached to this host")
    facing: FacingMode = Field(FacingMode.USER, description="Camera facing hint")


class StartSessionResponse(BaseModel):
    """Response after starting a session"""
    session_id: str
    submission_id: str
    status: str
    message: str
    vision_available: bool


class StreamFrameRequest(BaseModel):
    """Request to process a webcam frame"""
    session_id: str = Field(..., description="Session ID from /start")
    frame_base64: str = Field(..., description="Base64 encoded JPEG frame")
    annotate: bool = Field(False, description="Return a debug overlay of the frame")


class StreamFrameResponse(BaseModel):
    """Response after processing a frame"""
    processed: bool
    status: str
    message: str
    faces_count: int = 0
    devices: List[Dict[str, Any]] = []
    violations: List[str] = []
    counters: Dict[str, int]
    is_terminated: bool
    annotated_frame_base64: Optional[str] = None


class EnvironmentEventRequest(BaseModel):
    """Host environment change reported by the client"""
    session_id: str
    event: Literal["fullscreen", "visibility"]
    active: bool = Field(..., description="True when fullscreen / tab visible")


class EnvironmentEventResponse(BaseModel):
    """Environment state after applying an event"""
    changed: bool
    is_terminated: bool
    termination_reason: Optional[str] = None
    environment: Dict[str, Any]
    commands: List[str] = []


class ReinitializeRequest(BaseModel):
    """Request to rebuild visual proctoring"""
    session_id: str
    facing: Optional[FacingMode] = None


class StopSessionRequest(BaseModel):
    """Request to stop a proctoring session"""
    session_id: str


class SessionStatusResponse(BaseModel):
    """Current session status"""
    session_id: str
    status: str
    message: str
    is_active: bool
    is_terminated: bool
    termination_reason: Optional[str] = None
    vision_available: bool
    counters: Dict[str, int]
    environment: Dict[str, Any]
    ticks_processed: int
    duration_seconds: float


class ModelStatusResponse(BaseModel):
    """Model availability status"""
    dlib: bool
    shape_predictor: bool


def _status_response(snapshot: Dict[str, Any]) -> SessionStatusResponse:
    return SessionStatusResponse(
        session_id=snapshot["session_id"],
        status=snapshot["status"],
        message=snapshot["message"],
        is_active=snapshot["is_active"],
        is_terminated=snapshot["is_terminated"],
        termination_reason=snapshot["termination_reason"],
        vision_available=snapshot["vision_available"],
        counters=snapshot["counters"],
        environment=snapshot["environment"],
        ticks_processed=snapshot["ticks_processed"],
        duration_seconds=snapshot["duration_seconds"]
    )


def _decode_frame(frame_base64: str) -> np.ndarray:
    try:
        frame_bytes = base64.b64decode(frame_base64, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail="Invalid frame data")

    frame_array = np.frombuffer(frame_bytes, dtype=np.uint8)
    frame = cv2.imdecode(frame_array, cv2.IMREAD_COLOR) if frame_array.size else None
    if frame is None:
        raise HTTPException(status_code=400, detail="Invalid frame data")
    return frame


def _encode_frame(frame: np.ndarray) -> Optional[str]:
    ok, buffer = cv2.imencode(".jpg", frame)
    if not ok:
        return None
    return base64.b64encode(buffer.tobytes()).decode("ascii")


# ============== API Endpoints ==============

@router.post("/start", response_model=StartSessionResponse)
async def start_session(request: StartSessionRequest):
    """
    Start a new proctoring session.

    Finds or creates the submission record, loads detection models and
    starts environment monitoring. When visual proctoring cannot start the
    session still runs with status 'error'.
    """
    try:
        repository = get_repository()
        submission_id = await asyncio.to_thread(
            repository.ensure_submission, request.assessment_id, request.student_id
        )
        sink = ViolationSink(
            repository,
            submission_id,
            min_flush_interval=settings.SINK_FLUSH_INTERVAL_SECONDS,
            max_backoff=settings.SINK_MAX_BACKOFF_SECONDS
        )

        session = ProctorSession(
            assessment_id=request.assessment_id,
            student_id=request.student_id,
            face_detector=DlibFaceDetector(
                models_dir=settings.MODELS_DIR,
                upsample_times=settings.FACE_UPSAMPLE_TIMES,
                adjust_threshold=settings.FACE_ADJUST_THRESHOLD
            ),
            frame_source=FrameSource.from_settings(settings) if request.use_local_camera else None,
            sink=sink,
            platform=ClientReportedFullscreen()
        )
        session.facing = request.facing
        session.on_termination(lambda reason: _retire_session(session))
        await session.start()

        _sessions[session.id] = session

        logger.info(f"Started proctoring session: {session.id}")

        return StartSessionResponse(
            session_id=session.id,
            submission_id=submission_id,
            status=session.status.value,
            message=session.state_machine.message,
            vision_available=session.vision_available
        )

    except Exception as e:
        logger.error(f"Failed to start proctoring session: {e}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/stream", response_model=StreamFrameResponse)
async def stream_frame(request: StreamFrameRequest):
    """
    Process a single webcam frame.

    Frames arriving while the previous one is still being analysed are
    dropped and reported with processed=false.
    """
    session = _get_session(request.session_id)
    image = _decode_frame(request.frame_base64)

    try:
        result = await session.process_frame(DetectionFrame(image=image))
    except Exception as e:
        logger.error(f"Frame processing error: {e}")
        raise HTTPException(status_code=500, detail=f"Frame processing error: {str(e)}")

    if result is None:
        return StreamFrameResponse(
            processed=False,
            status=session.status.value,
            message=session.state_machine.message,
            counters=session.counters,
            is_terminated=session.is_terminated
        )

    annotated = None
    if request.annotate:
        annotated = _encode_frame(draw_detection_results(
            image,
            result.faces,
            result.status,
            result.devices,
            counters=session.counters,
            show_debug=settings.DEBUG
        ))

    return StreamFrameResponse(
        processed=result.processed,
        status=result.status.value,
        message=result.message,
        faces_count=result.faces_count,
        devices=[device.to_dict() for device in result.devices],
        violations=[event.type.value for event in result.violations],
        counters=session.counters,
        is_terminated=session.is_terminated,
        annotated_frame_base64=annotated
    )


@router.post("/environment", response_model=EnvironmentEventResponse)
async def environment_event(request: EnvironmentEventRequest):
    """
    Apply a fullscreen or tab-visibility change reported by the client.

    Returns pending fullscreen commands for the client to execute.
    """
    session = _get_session(request.session_id)

    if request.event == "fullscreen":
        changed = session.handle_fullscreen_change(request.active)
    else:
        changed = session.handle_visibility_change(request.active)

    return EnvironmentEventResponse(
        changed=changed,
        is_terminated=session.is_terminated,
        termination_reason=session.termination_reason,
        environment=session.environment.snapshot(),
        commands=session.pending_client_commands()
    )


@router.post("/reinitialize", response_model=SessionStatusResponse)
async def reinitialize_session(request: ReinitializeRequest):
    """
    Rebuild visual proctoring (reload models, re-acquire the camera).

    Counters are kept; face tracking starts over.
    """
    session = _get_session(request.session_id)

    try:
        snapshot = await session.reinitialize(request.facing)
    except SessionTerminatedError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error reinitializing session: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return _status_response(snapshot)


@router.post("/stop", response_model=SessionStatusResponse)
async def stop_session(request: StopSessionRequest, background_tasks: BackgroundTasks):
    """
    Stop a proctoring session and get final results.

    Flushes pending violations and releases the camera.
    """
    session = _get_session(request.session_id, require_active=False)

    try:
        snapshot = await session.stop()
    except Exception as e:
        logger.error(f"Error stopping session: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    background_tasks.add_task(_cleanup_session, request.session_id)
    return _status_response(snapshot)


@router.get("/status/{session_id}", response_model=SessionStatusResponse)
async def get_session_status(session_id: str):
    """
    Get current status of a proctoring session.
    """
    session = _get_session(session_id, require_active=False)
    return _status_response(session.snapshot())


@router.get("/models-status", response_model=ModelStatusResponse)
async def get_models_status():
    """
    Check which models are available.
    """
    from .models.model_loader import check_models

    status = check_models(settings.MODELS_DIR)

    return ModelStatusResponse(**status)


@router.get("/health")
async def proctor_health():
    """Proctoring router health"""
    return {
        "status": "healthy",
        "active_sessions": sum(1 for s in _sessions.values() if s.is_active)
    }


def _cleanup_session(session_id: str):
    """Remove session from memory after stop"""
    if session_id in _sessions:
        del _sessions[session_id]
        logger.debug(f"Cleaned up session: {session_id}")


def _retire_session(session: ProctorSession):
    """Drop a terminated session; its shutdown finishes in the background"""
    _sessions.pop(session.id, None)
    task = asyncio.get_running_loop().create_task(_await_shutdown(session))
    _closing.add(task)
    task.add_done_callback(_closing.discard)


async def _await_shutdown(session: ProctorSession):
    await session.wait_closed()
    logger.info(f"Terminated session removed: {session.id}")
