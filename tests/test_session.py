import asyncio
import random

import pytest

from hermes_assessment.errors import (
    AudioSynthesisError,
    AuthError,
    CaptureInUseError,
    GenerationError,
    MalformedResponseError,
    ReportSynthesisError,
    ScoringError,
    SessionStateError,
)
from hermes_assessment.schemas import (
    SKILL_ORDER,
    ListeningTask,
    ReadingTask,
    Skill,
    StudentAnswer,
    WritingTask,
)
from hermes_assessment.session import AssessmentSession, SessionStatus

from conftest import FAKE_PCM, WRITING_FEEDBACK, FakeStore


def make_session(provider, store, identity=None) -> AssessmentSession:
    session = AssessmentSession(
        content_provider=provider,
        grading_provider=provider,
        audio_provider=provider,
        store=store,
        rng=random.Random(5),
    )
    if identity is not None:
        session.authenticate(identity)
    return session


def answers_for(session: AssessmentSession):
    """Correct objective answers, a short essay and a recorded speaking answer."""
    skill = session.current_skill
    answers = []
    for question in session.current_questions:
        if isinstance(question, (ReadingTask, ListeningTask)):
            answers += [StudentAnswer(question_id=s.id, answer_value=s.correct_option_id) for s in question.sub_questions]
        elif skill == Skill.WRITING:
            answers.append(StudentAnswer(question_id=question.id, answer_value="Last weekend I visited my aunt."))
        elif skill == Skill.SPEAKING:
            answers.append(StudentAnswer(question_id=question.id, answer_value="UklGRg==", media_type="audio/webm"))
        else:
            answers.append(StudentAnswer(question_id=question.id, answer_value=question.correct_option_id))
    return answers


def test_authenticate_requires_identity(provider, store):
    session = make_session(provider, store)
    with pytest.raises(AuthError):
        session.authenticate(None)
    assert session.status == SessionStatus.UNAUTHENTICATED


async def test_start_requires_identity(provider, store, b1):
    session = make_session(provider, store)
    with pytest.raises(AuthError):
        await session.start(b1)
    assert session.status == SessionStatus.UNAUTHENTICATED
    assert provider.calls == []


async def test_full_b1_session(provider, store, identity, b1):
    session = make_session(provider, store, identity)
    assert session.status == SessionStatus.AWAITING_START

    await session.start(b1)
    seen = []
    while session.status == SessionStatus.SECTION_ACTIVE:
        seen.append(session.current_skill)
        await session.submit_section(answers_for(session))

    assert session.status == SessionStatus.REPORT_READY
    assert seen == SKILL_ORDER
    assert [r.skill for r in session.section_results] == SKILL_ORDER
    scores = {r.skill: r for r in session.section_results}
    assert scores[Skill.VOCABULARY].score == 100
    assert scores[Skill.READING].score == 100
    assert scores[Skill.WRITING].score == 72
    assert scores[Skill.WRITING].feedback == WRITING_FEEDBACK
    # One generation call per skill plus the report
    assert provider.calls == ["vocabulary", "grammar", "reading", "listening", "writing", "speaking", "report"]

    report = session.report
    assert report.student_name == "Maria Silva"
    assert report.assessed_level == b1
    assert len(store.records) == 1 and len(store.profiles) == 1
    assert store.records[0].identity_id == "learner-1"
    assert session.persistence_warning is None


async def test_persistence_failure_is_only_a_warning(provider, identity, b1):
    store = FakeStore(fail=True)
    session = make_session(provider, store, identity)
    await session.start(b1)
    while session.status == SessionStatus.SECTION_ACTIVE:
        await session.submit_section(answers_for(session))
    assert session.status == SessionStatus.REPORT_READY
    assert session.report is not None
    assert "read-only" in session.persistence_warning


async def test_generation_failure_moves_to_failed_and_restart_recovers(provider, store, identity, b1):
    provider.overrides["grammar"] = RuntimeError("quota exceeded")
    session = make_session(provider, store, identity)
    await session.start(b1)
    with pytest.raises(GenerationError):
        await session.submit_section(answers_for(session))
    assert session.status == SessionStatus.FAILED
    assert "quota exceeded" in session.error
    # The vocabulary section was scored before the failure; nothing partial from grammar
    assert [r.skill for r in session.section_results] == [Skill.VOCABULARY]

    session.restart()
    assert session.status == SessionStatus.AWAITING_START
    assert session.section_results == [] and session.error is None
    del provider.overrides["grammar"]
    await session.start(b1)
    assert session.current_skill == Skill.VOCABULARY


async def test_scoring_failure_moves_to_failed(provider, store, identity, b1):
    provider.grading_error = RuntimeError("grader offline")
    session = make_session(provider, store, identity)
    await session.start(b1)
    while session.current_skill != Skill.WRITING:
        await session.submit_section(answers_for(session))
    with pytest.raises(ScoringError):
        await session.submit_section(answers_for(session))
    assert session.status == SessionStatus.FAILED
    assert Skill.WRITING not in [r.skill for r in session.section_results]


async def test_submit_outside_active_section_is_rejected(provider, store, identity):
    session = make_session(provider, store, identity)
    with pytest.raises(SessionStateError):
        await session.submit_section([])
    assert session.status == SessionStatus.AWAITING_START


async def test_restart_only_from_terminal_states(provider, store, identity, b1):
    session = make_session(provider, store, identity)
    await session.start(b1)
    with pytest.raises(SessionStateError):
        session.restart()
    with pytest.raises(SessionStateError):
        await session.start(b1)
    assert session.status == SessionStatus.SECTION_ACTIVE


async def test_report_failure_moves_to_failed_without_a_report(provider, store, identity, b1):
    provider.overrides["report"] = RuntimeError("model overloaded")
    session = make_session(provider, store, identity)
    await session.start(b1)
    with pytest.raises(ReportSynthesisError):
        while session.status == SessionStatus.SECTION_ACTIVE:
            await session.submit_section(answers_for(session))
    assert session.status == SessionStatus.FAILED
    assert "model overloaded" in session.error
    assert session.report is None
    assert len(session.section_results) == len(SKILL_ORDER)
    assert store.records == []


async def test_malformed_section_reply_moves_to_failed(provider, store, identity, b1):
    provider.overrides["grammar"] = "not json"
    session = make_session(provider, store, identity)
    await session.start(b1)
    with pytest.raises(MalformedResponseError):
        await session.submit_section(answers_for(session))
    assert session.status == SessionStatus.FAILED
    assert session.error
    assert session.report is None
    assert session.current_questions == []


async def test_listening_audio_is_cached_and_failures_keep_state(provider, store, identity, b1):
    session = make_session(provider, store, identity)
    await session.start(b1)
    with pytest.raises(SessionStateError):
        await session.play_dialogue()
    while session.current_skill != Skill.LISTENING:
        await session.submit_section(answers_for(session))

    raw = await session.play_dialogue()
    await session.play_dialogue()
    assert raw == FAKE_PCM
    assert session.resources.playback.channels == 1
    assert session.resources.playback.frame_count == 4
    assert len(provider.speech_calls) == 1

    session.audio._cache.clear()
    provider.audio = None
    with pytest.raises(AudioSynthesisError):
        await session.play_dialogue()
    assert session.status == SessionStatus.SECTION_ACTIVE

    await session.submit_section(answers_for(session))
    assert session.resources.playback is None


async def test_capture_only_during_speaking(provider, store, identity, b1):
    session = make_session(provider, store, identity)
    await session.start(b1)
    with pytest.raises(SessionStateError):
        session.start_capture()
    while session.current_skill != Skill.SPEAKING:
        await session.submit_section(answers_for(session))

    session.start_capture("audio/ogg")
    with pytest.raises(CaptureInUseError):
        session.start_capture()
    session.append_capture(b"\x01\x02")
    captured = session.stop_capture()
    assert captured.media_type == "audio/ogg"

    session.start_capture()
    await session.submit_section(
        [StudentAnswer(question_id=session.current_questions[0].id, answer_value=captured.data_base64, media_type=captured.media_type)]
    )
    assert session.resources.capture is None
    assert provider.grading_calls[-1]["media_type"] == "audio/ogg"


async def test_empty_writing_answer_gets_zero(provider, store, identity, b1):
    session = make_session(provider, store, identity)
    await session.start(b1)
    while session.current_skill != Skill.WRITING:
        await session.submit_section(answers_for(session))
    assert isinstance(session.current_questions[0], WritingTask)
    await session.submit_section([])
    assert session.section_results[-1].score == 0
    assert provider.grading_calls == []


async def test_dialogue_audio_finishing_after_the_section_ends_is_discarded(provider, store, identity, b1):
    session = make_session(provider, store, identity)
    await session.start(b1)
    while session.current_skill != Skill.LISTENING:
        await session.submit_section(answers_for(session))

    release = asyncio.Event()
    synthesize = provider.synthesize_speech

    async def gated(transcript, speech_config):
        await release.wait()
        return await synthesize(transcript, speech_config)

    provider.synthesize_speech = gated
    pending = asyncio.create_task(session.play_dialogue())
    await asyncio.sleep(0)
    await session.submit_section(answers_for(session))
    release.set()

    with pytest.raises(SessionStateError):
        await pending
    assert session.current_skill == Skill.WRITING
    assert session.resources.playback is None
