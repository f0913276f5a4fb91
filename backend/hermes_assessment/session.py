"""
Assessment Session

State machine that walks one learner through every skill section in a fixed
order, then synthesizes and persists the final report.

    unauthenticated -> initializing -> awaiting_start -> section_loading
      -> section_active -> section_submitting -> (section_loading ...)
      -> report_generating -> report_ready

Any state may fall into `failed`; `failed` and `report_ready` allow `restart`
back to `awaiting_start`. Only this class mutates session state; generation,
scoring, reporting and audio are functions over injected providers.
"""

from __future__ import annotations

import logging
import random
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Sequence

from .audio import AudioResources, CapturedAudio, CaptureStream, DialogueAudioPipeline
from .errors import FATAL_ERRORS, AssessmentError, AuthError, PersistenceError, SessionStateError
from .generation import generate_questions
from .providers import AssessmentStore, AudioProvider, ContentProvider, GradingProvider
from .report import synthesize_report
from .schemas import (
    SKILL_ORDER,
    AssessmentRecord,
    FinalReport,
    Identity,
    ListeningTask,
    ProficiencyLevel,
    ProfileUpsert,
    Question,
    SectionResult,
    Skill,
    StudentAnswer,
)
from .scoring import score_section

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    INITIALIZING = "initializing"
    AWAITING_START = "awaiting_start"
    SECTION_LOADING = "section_loading"
    SECTION_ACTIVE = "section_active"
    SECTION_SUBMITTING = "section_submitting"
    REPORT_GENERATING = "report_generating"
    REPORT_READY = "report_ready"
    FAILED = "failed"


# `failed` is reachable from every state and is not listed here
TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.UNAUTHENTICATED: frozenset({SessionStatus.INITIALIZING}),
    SessionStatus.INITIALIZING: frozenset({SessionStatus.AWAITING_START}),
    SessionStatus.AWAITING_START: frozenset({SessionStatus.SECTION_LOADING}),
    SessionStatus.SECTION_LOADING: frozenset({SessionStatus.SECTION_ACTIVE}),
    SessionStatus.SECTION_ACTIVE: frozenset({SessionStatus.SECTION_SUBMITTING}),
    SessionStatus.SECTION_SUBMITTING: frozenset({SessionStatus.SECTION_LOADING, SessionStatus.REPORT_GENERATING}),
    SessionStatus.REPORT_GENERATING: frozenset({SessionStatus.REPORT_READY}),
    SessionStatus.REPORT_READY: frozenset({SessionStatus.AWAITING_START}),
    SessionStatus.FAILED: frozenset({SessionStatus.AWAITING_START}),
}


class AssessmentSession:
    def __init__(
        self,
        *,
        content_provider: ContentProvider,
        grading_provider: GradingProvider,
        audio_provider: AudioProvider,
        store: AssessmentStore,
        rng: Optional[random.Random] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.session_id: str = session_id or uuid.uuid4().hex
        self.content_provider = content_provider
        self.grading_provider = grading_provider
        self.store = store
        self.rng = rng or random.Random()
        self.audio = DialogueAudioPipeline(audio_provider)
        self.resources = AudioResources()

        self.status: SessionStatus = SessionStatus.UNAUTHENTICATED
        self.identity: Optional[Identity] = None
        self.level: Optional[ProficiencyLevel] = None
        self.skill_index: int = 0
        self.current_questions: List[Question] = []
        self.section_results: List[SectionResult] = []
        self.report: Optional[FinalReport] = None
        self.error: Optional[str] = None
        self.persistence_warning: Optional[str] = None

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    @property
    def current_skill(self) -> Optional[Skill]:
        if self.level is None or self.skill_index >= len(SKILL_ORDER):
            return None
        return SKILL_ORDER[self.skill_index]

    def _require(self, *allowed: SessionStatus) -> None:
        if self.status not in allowed:
            expected = ", ".join(s.value for s in allowed)
            raise SessionStateError(f"Operation not allowed in state '{self.status.value}' (expected {expected})")

    def _transition(self, target: SessionStatus) -> None:
        if target != SessionStatus.FAILED and target not in TRANSITIONS[self.status]:
            raise SessionStateError(f"Illegal transition {self.status.value} -> {target.value}")
        logger.debug("Session %s: %s -> %s", self.session_id, self.status.value, target.value)
        self.status = target

    def _fail(self, exc: AssessmentError) -> None:
        logger.error("Session %s failed in %s: %s", self.session_id, self.status.value, exc.description)
        self.resources.release()
        self.error = exc.description
        self._transition(SessionStatus.FAILED)

    def _reset(self) -> None:
        self.resources.release()
        self.level = None
        self.skill_index = 0
        self.current_questions = []
        self.section_results = []
        self.report = None
        self.error = None
        self.persistence_warning = None

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------

    def authenticate(self, identity: Optional[Identity]) -> None:
        """Bind the identity issued by the identity provider; the session is then ready to start."""
        self._require(SessionStatus.UNAUTHENTICATED)
        if identity is None or not identity.id:
            raise AuthError("Sign in is required before starting an assessment")
        self._transition(SessionStatus.INITIALIZING)
        self.identity = identity
        self._reset()
        self._transition(SessionStatus.AWAITING_START)
        logger.info("Session %s bound to identity %s", self.session_id, identity.id)

    async def start(self, level: ProficiencyLevel) -> None:
        if self.status == SessionStatus.UNAUTHENTICATED or self.identity is None:
            raise AuthError("Sign in is required before starting an assessment")
        self._require(SessionStatus.AWAITING_START)
        self._reset()
        self.level = level
        logger.info("Session %s starting at %s", self.session_id, level.value)
        await self._load_section()

    async def _load_section(self) -> None:
        skill = self.current_skill
        assert skill is not None and self.level is not None
        self._transition(SessionStatus.SECTION_LOADING)
        self.resources.release()
        self.current_questions = []
        try:
            questions = await generate_questions(self.content_provider, skill, self.level, rng=self.rng)
        except FATAL_ERRORS as exc:
            self._fail(exc)
            raise
        self.current_questions = questions
        self._transition(SessionStatus.SECTION_ACTIVE)

    async def submit_section(self, answers: Sequence[StudentAnswer]) -> None:
        """
        Score the active section and move on to the next skill or the report.

        Raises:
            SessionStateError: If no section is active
            ScoringError / GenerationError / MalformedResponseError / ReportSynthesisError:
                After moving the session to `failed`
        """
        self._require(SessionStatus.SECTION_ACTIVE)
        skill = self.current_skill
        assert skill is not None and self.level is not None
        self._transition(SessionStatus.SECTION_SUBMITTING)
        self.resources.release()
        try:
            result = await score_section(
                skill,
                self.current_questions,
                answers,
                grader=self.grading_provider,
                level=self.level,
            )
        except FATAL_ERRORS as exc:
            self._fail(exc)
            raise

        self.section_results.append(result)
        self.skill_index += 1
        if self.skill_index < len(SKILL_ORDER):
            await self._load_section()
        else:
            self.current_questions = []
            await self._generate_report()

    async def _generate_report(self) -> None:
        assert self.identity is not None and self.level is not None
        self._transition(SessionStatus.REPORT_GENERATING)
        student_name = self.identity.name or self.identity.email or self.identity.id
        try:
            report = await synthesize_report(self.content_provider, student_name, self.section_results, self.level)
        except FATAL_ERRORS as exc:
            self._fail(exc)
            raise
        self.report = report
        await self._persist(report)
        self._transition(SessionStatus.REPORT_READY)

    async def _persist(self, report: FinalReport) -> None:
        assert self.identity is not None and self.level is not None
        now = datetime.now(timezone.utc)
        record = AssessmentRecord(
            identity_id=self.identity.id,
            student_name=report.student_name,
            timestamp=now,
            target_level=self.level,
            final_report=report,
        )
        profile = ProfileUpsert(
            identity_id=self.identity.id,
            name=report.student_name,
            email=self.identity.email,
            last_assessment_timestamp=now,
        )
        try:
            await self.store.save_assessment(record)
            await self.store.upsert_profile(profile)
        except PersistenceError as exc:
            logger.warning("Session %s: assessment not saved: %s", self.session_id, exc.description)
            self.persistence_warning = exc.description

    def restart(self) -> None:
        self._require(SessionStatus.FAILED, SessionStatus.REPORT_READY)
        self._reset()
        self._transition(SessionStatus.AWAITING_START)

    def close(self) -> None:
        self.resources.release()
        logger.info("Session %s closed in state %s", self.session_id, self.status.value)

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def listening_task(self) -> ListeningTask:
        self._require(SessionStatus.SECTION_ACTIVE)
        task = next((q for q in self.current_questions if isinstance(q, ListeningTask)), None)
        if task is None:
            raise SessionStateError("The active section has no listening dialogue")
        return task

    async def play_dialogue(self) -> bytes:
        """
        Synthesize (or fetch from cache) the active listening dialogue and load it for playback.

        Returns:
            bytes: Raw PCM16 of the dialogue

        Raises:
            AudioSynthesisError: Session state is left untouched
            SessionStateError: If the section changed while the audio was being synthesized
        """
        task = self.listening_task()
        skill_index, status = self.skill_index, self.status
        raw = await self.audio.synthesize_dialogue(task.dialogue_lines, task.speaker_voice_map)
        # Audio for a section that is no longer active is discarded
        if (
            self.skill_index != skill_index
            or self.status != status
            or not any(q is task for q in self.current_questions)
        ):
            raise SessionStateError("The listening section ended before its audio was ready")
        self.resources.load_playback(self.audio.decode(raw))
        return raw

    def _require_speaking(self) -> None:
        self._require(SessionStatus.SECTION_ACTIVE)
        if self.current_skill != Skill.SPEAKING:
            raise SessionStateError("Recording is only available during the Speaking section")

    def start_capture(self, mime_type: Optional[str] = None) -> CaptureStream:
        self._require_speaking()
        return self.resources.start_capture(mime_type)

    def append_capture(self, chunk: bytes) -> int:
        self._require_speaking()
        return self.resources.append_capture(chunk)

    def stop_capture(self) -> Optional[CapturedAudio]:
        self._require_speaking()
        return self.resources.stop_capture()
