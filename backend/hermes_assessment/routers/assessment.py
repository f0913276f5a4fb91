"""
Assessment Router

HTTP surface for the multi-skill placement assessment.

It handles:
- Creating a session bound to the signed-in identity
- Starting, submitting, restarting and closing the session flow
- Listening dialogue audio (base64 PCM16 plus format)
- Speaking capture (start, upload chunks, stop)
- Past reports for the signed-in learner

Correct answers never leave the server: question payloads are stripped before
they are returned.
"""

from __future__ import annotations

import base64
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from pydantic import BaseModel, Field

from ..errors import (
    FATAL_ERRORS,
    AudioSynthesisError,
    AuthError,
    CaptureInUseError,
    PersistenceError,
    SessionStateError,
)
from ..providers import AssessmentStore, GeminiProvider
from ..schemas import SKILL_ORDER, FinalReport, Identity, ProficiencyLevel, Question, Skill, StudentAnswer
from ..session import AssessmentSession, SessionStatus
from ..settings import settings
from ..store import SqlAssessmentStore
from .auth import get_current_identity

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/assessment", tags=["assessment"])

# Keys that reveal the expected answer
_HIDDEN_KEYS = ("correct_option_id", "correct_answer")

_sessions: Dict[str, AssessmentSession] = {}


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_provider() -> Any:
    """Content, grading and audio provider; tests override this with fakes."""
    return GeminiProvider()


def get_store() -> AssessmentStore:
    return SqlAssessmentStore()


# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

class StartRequest(BaseModel):
    level: Optional[ProficiencyLevel] = None


class SubmitRequest(BaseModel):
    answers: List[StudentAnswer] = Field(default_factory=list)


class CaptureStartRequest(BaseModel):
    mime_type: Optional[str] = None


class SectionScore(BaseModel):
    skill: Skill
    score: Optional[float] = None
    feedback: Optional[str] = None


class SessionView(BaseModel):
    session_id: str
    status: SessionStatus
    level: Optional[ProficiencyLevel] = None
    current_skill: Optional[Skill] = None
    section_index: int
    total_sections: int
    questions: List[Dict[str, Any]]
    section_scores: List[SectionScore]
    report: Optional[FinalReport] = None
    error: Optional[str] = None
    persistence_warning: Optional[str] = None


class DialogueAudioResponse(BaseModel):
    audio_base64: str
    sample_rate: int
    channels: int
    frames: int
    duration_seconds: float


class CaptureStateResponse(BaseModel):
    capture_id: Optional[str] = None
    mime_type: Optional[str] = None
    size_bytes: int = 0


class CaptureStopResponse(BaseModel):
    data_base64: str = ""
    media_type: Optional[str] = None
    size_bytes: int = 0


# ============================================================================
# HELPERS
# ============================================================================

def public_question(question: Question) -> Dict[str, Any]:
    """Dump a question without its answer key, including nested sub-questions."""
    data = question.model_dump(mode="json")
    for key in _HIDDEN_KEYS:
        data.pop(key, None)
    for sub in data.get("sub_questions") or []:
        for key in _HIDDEN_KEYS:
            sub.pop(key, None)
    # Voice assignment is a synthesis detail
    data.pop("speaker_voice_map", None)
    return data


def session_view(session: AssessmentSession) -> SessionView:
    return SessionView(
        session_id=session.session_id,
        status=session.status,
        level=session.level,
        current_skill=session.current_skill,
        section_index=session.skill_index,
        total_sections=len(SKILL_ORDER),
        questions=[public_question(q) for q in session.current_questions],
        section_scores=[
            SectionScore(skill=r.skill, score=r.score, feedback=r.feedback) for r in session.section_results
        ],
        report=session.report,
        error=session.error,
        persistence_warning=session.persistence_warning,
    )


def _get_session(session_id: str, identity: Identity) -> AssessmentSession:
    session = _sessions.get(session_id)
    # Sessions of other learners are reported as missing
    if not session or session.identity is None or session.identity.id != identity.id:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


async def _run_flow(session: AssessmentSession, action: Callable[[], Awaitable[None]]) -> SessionView:
    """Run a flow step; fatal errors are reported through the failed session snapshot."""
    try:
        await action()
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=exc.description)
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=exc.description)
    except FATAL_ERRORS as exc:
        logger.warning("Session %s failed: %s", session.session_id, exc.description)
    return session_view(session)


# ============================================================================
# API ENDPOINTS
# ============================================================================

@router.post("/session", response_model=SessionView, status_code=201)
async def create_session(
    identity: Identity = Depends(get_current_identity),
    provider: Any = Depends(get_provider),
    store: AssessmentStore = Depends(get_store),
):
    """
    Create an assessment session for the signed-in learner.

    The identity issued by `/auth` is bound immediately, so the new session
    is returned in `awaiting_start`.
    """
    session = AssessmentSession(
        content_provider=provider,
        grading_provider=provider,
        audio_provider=provider,
        store=store,
    )
    try:
        session.authenticate(identity)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=exc.description)
    _sessions[session.session_id] = session
    return session_view(session)


@router.get("/history", response_model=List[FinalReport])
async def history(
    limit: int = 20,
    identity: Identity = Depends(get_current_identity),
    store: Any = Depends(get_store),
):
    try:
        return store.list_reports(identity.id, limit=max(1, min(limit, 100)))
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=exc.description)


@router.get("/{session_id}", response_model=SessionView)
async def get_state(session_id: str, identity: Identity = Depends(get_current_identity)):
    return session_view(_get_session(session_id, identity))


@router.post("/{session_id}/start", response_model=SessionView)
async def start(session_id: str, req: StartRequest, identity: Identity = Depends(get_current_identity)):
    """
    Start the assessment at the requested level and load the first section.

    Returns the session snapshot; when content generation fails the snapshot
    is in `failed` with the error description.
    """
    session = _get_session(session_id, identity)
    level = req.level or ProficiencyLevel(settings.default_level.upper())
    return await _run_flow(session, lambda: session.start(level))


@router.post("/{session_id}/submit", response_model=SessionView)
async def submit(session_id: str, req: SubmitRequest, identity: Identity = Depends(get_current_identity)):
    """
    Submit the answers of the active section.

    Moves on to the next section, or to the final report after Speaking.
    """
    session = _get_session(session_id, identity)
    return await _run_flow(session, lambda: session.submit_section(req.answers))


@router.post("/{session_id}/restart", response_model=SessionView)
async def restart(session_id: str, identity: Identity = Depends(get_current_identity)):
    session = _get_session(session_id, identity)
    try:
        session.restart()
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=exc.description)
    return session_view(session)


@router.delete("/{session_id}", status_code=204)
async def close(session_id: str, identity: Identity = Depends(get_current_identity)):
    session = _get_session(session_id, identity)
    session.close()
    _sessions.pop(session_id, None)


@router.post("/{session_id}/listening/audio", response_model=DialogueAudioResponse)
async def listening_audio(session_id: str, identity: Identity = Depends(get_current_identity)):
    """
    Synthesize the active listening dialogue.

    Repeated requests for the same dialogue are served from the session's
    audio cache. A synthesis failure leaves the session unchanged.
    """
    session = _get_session(session_id, identity)
    try:
        raw = await session.play_dialogue()
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=exc.description)
    except AudioSynthesisError as exc:
        raise HTTPException(status_code=502, detail=exc.description)
    sample_rate, channels = session.audio.sample_rate, session.audio.channels
    frames = len(raw) // (2 * channels)
    return DialogueAudioResponse(
        audio_base64=base64.b64encode(raw).decode("ascii"),
        sample_rate=sample_rate,
        channels=channels,
        frames=frames,
        duration_seconds=round(frames / sample_rate, 3) if sample_rate else 0.0,
    )


@router.post("/{session_id}/speaking/capture/start", response_model=CaptureStateResponse)
async def capture_start(
    session_id: str,
    req: CaptureStartRequest,
    identity: Identity = Depends(get_current_identity),
):
    session = _get_session(session_id, identity)
    try:
        stream = session.start_capture(req.mime_type)
    except (SessionStateError, CaptureInUseError) as exc:
        raise HTTPException(status_code=409, detail=exc.description)
    return CaptureStateResponse(capture_id=stream.capture_id, mime_type=stream.mime_type, size_bytes=0)


@router.post("/{session_id}/speaking/capture/chunk", response_model=CaptureStateResponse)
async def capture_chunk(
    session_id: str,
    chunk: UploadFile = File(...),
    identity: Identity = Depends(get_current_identity),
):
    session = _get_session(session_id, identity)
    data = await chunk.read()
    try:
        size = session.append_capture(data)
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=exc.description)
    stream = session.resources.capture
    return CaptureStateResponse(
        capture_id=stream.capture_id if stream else None,
        mime_type=stream.mime_type if stream else None,
        size_bytes=size,
    )


@router.post("/{session_id}/speaking/capture/stop", response_model=CaptureStopResponse)
async def capture_stop(session_id: str, identity: Identity = Depends(get_current_identity)):
    """
    Stop recording and return the captured audio.

    The client submits it as the Speaking answer (`answer_value` plus
    `media_type`).
    """
    session = _get_session(session_id, identity)
    try:
        captured = session.stop_capture()
    except SessionStateError as exc:
        raise HTTPException(status_code=409, detail=exc.description)
    if captured is None:
        return CaptureStopResponse()
    return CaptureStopResponse(
        data_base64=captured.data_base64,
        media_type=captured.media_type,
        size_bytes=captured.size_bytes,
    )
