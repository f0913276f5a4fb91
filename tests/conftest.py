import base64
import json
import os
import struct
from typing import Any, Dict, List, Optional

# Keep the app on an in-memory database before any hermes_assessment import
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("GEMINI_API_KEY", None)

import pytest

from hermes_assessment.errors import PersistenceError
from hermes_assessment.schemas import (
    AssessmentRecord,
    FinalReport,
    GradingResult,
    Identity,
    ProficiencyLevel,
    ProfileUpsert,
)

WRITING_FEEDBACK = "Clear structure and good linking words; watch past tense endings."
FAKE_PCM = struct.pack("<4h", 0, 16384, -16384, 32767)


def mcq_payload(count: int, correct: str = "B") -> str:
    return json.dumps(
        {
            "questions": [
                {
                    "questionText": f"Question {i}?",
                    "options": {"A": "alpha", "B": "bravo", "C": "charlie", "D": "delta"},
                    "correctAnswerKey": correct,
                }
                for i in range(count)
            ]
        }
    )


def sub_questions(count: int = 2, correct: str = "C") -> List[Dict[str, Any]]:
    return [
        {
            "questionText": f"Sub question {i}?",
            "options": {"A": "one", "B": "two", "C": "three"},
            "correctAnswerKey": correct,
        }
        for i in range(count)
    ]


def reading_payload() -> str:
    return json.dumps({"passage": "Tom lives in a small town by the sea.", "questions": sub_questions()})


def listening_payload(voice1: str = "kore", voice2: str = "puck", *, extra_speaker: Optional[str] = None) -> str:
    lines = [
        {"speaker": "Anna", "line": "Hi Ben, are you coming to the market?"},
        {"speaker": "Ben", "line": "Yes, I need some apples."},
        {"speaker": "Anna", "line": "Great, let's go at ten."},
        {"speaker": "Ben", "line": "Perfect, see you then."},
    ]
    if extra_speaker:
        lines.append({"speaker": extra_speaker, "line": "Tickets, please."})
    return json.dumps(
        {
            "dialogueTitle": "At the market",
            "characterAssignment": {
                "character1Name": "Anna",
                "character1VoiceName": voice1,
                "character2Name": "Ben",
                "character2VoiceName": voice2,
            },
            "lines": lines,
            "questions": sub_questions(),
        }
    )


def prompt_payload(prompt: str, description: Optional[str]) -> str:
    data: Dict[str, Any] = {"prompt": prompt}
    if description is not None:
        data["taskDescription"] = description
    return json.dumps(data)


def report_payload(level: str = "B1") -> str:
    return json.dumps(
        {
            "overallEstimatedLevel": level,
            "skillSummaries": [
                {
                    "skill": "Vocabulary",
                    "score": 100,
                    "achievedLevel": "B1",
                    "strengths": "Wide range",
                    "weaknesses": "None noted",
                    "recommendations": "Read more news",
                },
                {
                    "skill": "Writing",
                    "score": 72,
                    "strengths": "Organisation",
                    "weaknesses": "Verb forms",
                    "recommendations": "Practise past simple",
                },
            ],
            "detailedFeedback": "A solid B1 performance overall.",
        }
    )


class FakeProvider:
    """Content, grading and audio provider answering from canned payloads."""

    def __init__(self) -> None:
        self.calls: List[str] = []
        self.grading_calls: List[Dict[str, Any]] = []
        self.speech_calls: List[Dict[str, Any]] = []
        self.overrides: Dict[str, Any] = {}
        self.grading_result = GradingResult(score=72, feedback=WRITING_FEEDBACK, estimated_level="B1")
        self.grading_error: Optional[Exception] = None
        self.audio: Optional[str] = base64.b64encode(FAKE_PCM).decode("ascii")

    @staticmethod
    def classify(instructions: str, schema: Dict[str, Any]) -> str:
        props = schema.get("properties", {})
        if "overallEstimatedLevel" in props:
            return "report"
        if "passage" in props:
            return "reading"
        if "characterAssignment" in props:
            return "listening"
        if "prompt" in props:
            return "writing" if "taskDescription" in schema.get("required", []) else "speaking"
        return "vocabulary" if "multiple-choice vocabulary" in instructions else "grammar"

    async def generate_content(self, instructions: str, response_schema: Dict[str, Any]) -> str:
        kind = self.classify(instructions, response_schema)
        self.calls.append(kind)
        override = self.overrides.get(kind)
        if isinstance(override, Exception):
            raise override
        if override is not None:
            return override
        if kind in ("vocabulary", "grammar"):
            return mcq_payload(3)
        if kind == "reading":
            return reading_payload()
        if kind == "listening":
            assignment = response_schema["properties"]["characterAssignment"]["properties"]
            return listening_payload(
                assignment["character1VoiceName"]["enum"][0],
                assignment["character2VoiceName"]["enum"][0],
            )
        if kind == "writing":
            return prompt_payload("Write an email to a friend about your weekend.", "80-120 words; mention two activities.")
        if kind == "speaking":
            return prompt_payload("Describe your favourite place in your town.", None)
        return report_payload()

    async def grade_submission(self, original_prompt, submission, target_level, *, media_type=None) -> GradingResult:
        self.grading_calls.append(
            {"prompt": original_prompt, "submission": submission, "level": target_level, "media_type": media_type}
        )
        if self.grading_error is not None:
            raise self.grading_error
        return self.grading_result

    async def synthesize_speech(self, transcript: str, speech_config: Dict[str, Any]) -> Optional[str]:
        self.speech_calls.append({"transcript": transcript, "speech_config": speech_config})
        return self.audio


class FakeStore:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.records: List[AssessmentRecord] = []
        self.profiles: List[ProfileUpsert] = []

    async def save_assessment(self, record: AssessmentRecord) -> None:
        if self.fail:
            raise PersistenceError("database is read-only")
        self.records.append(record)

    async def upsert_profile(self, profile: ProfileUpsert) -> None:
        if self.fail:
            raise PersistenceError("database is read-only")
        self.profiles.append(profile)

    def list_reports(self, identity_id: str, limit: int = 20) -> List[FinalReport]:
        return [r.final_report for r in self.records if r.identity_id == identity_id][:limit]


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def identity() -> Identity:
    return Identity(id="learner-1", name="Maria Silva", email="maria@example.com")


@pytest.fixture
def b1() -> ProficiencyLevel:
    return ProficiencyLevel.B1
