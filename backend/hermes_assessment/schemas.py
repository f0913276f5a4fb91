from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Skill(str, Enum):
    VOCABULARY = "Vocabulary"
    GRAMMAR = "Grammar"
    READING = "Reading"
    LISTENING = "Listening"
    WRITING = "Writing"
    SPEAKING = "Speaking"

    @property
    def slug(self) -> str:
        return self.value.lower().replace(" ", "-")


class ProficiencyLevel(str, Enum):
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"

    @property
    def ordinal(self) -> int:
        return LEVEL_ORDER.index(self)


# Fixed global order; every session walks it exactly once
SKILL_ORDER: List[Skill] = [
    Skill.VOCABULARY,
    Skill.GRAMMAR,
    Skill.READING,
    Skill.LISTENING,
    Skill.WRITING,
    Skill.SPEAKING,
]

LEVEL_ORDER: List[ProficiencyLevel] = list(ProficiencyLevel)


# Cambridge exam family used as calibration context in prompts
CAMBRIDGE_BY_LEVEL: Dict[ProficiencyLevel, str] = {
    ProficiencyLevel.A1: "KET",
    ProficiencyLevel.A2: "KET",
    ProficiencyLevel.B1: "PET",
    ProficiencyLevel.B2: "FCE",
    ProficiencyLevel.C1: "FCE",
    ProficiencyLevel.C2: "FCE",
}


# ============================================================================
# QUESTIONS
# ============================================================================

class QuestionOption(BaseModel):
    id: str
    text: str


class DialogueLine(BaseModel):
    speaker: str
    line: str


class _QuestionBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    skill: Skill
    level: ProficiencyLevel
    prompt_text: str


class MultipleChoiceQuestion(_QuestionBase):
    kind: Literal["multiple_choice"] = "multiple_choice"
    options: List[QuestionOption]
    correct_option_id: str


class FillBlankQuestion(_QuestionBase):
    kind: Literal["fill_blank"] = "fill_blank"
    correct_answer: str


class ReadingTask(_QuestionBase):
    kind: Literal["reading_task"] = "reading_task"
    passage: str
    sub_questions: List[MultipleChoiceQuestion] = Field(default_factory=list)


class ListeningTask(_QuestionBase):
    kind: Literal["listening_task"] = "listening_task"
    dialogue_title: Optional[str] = None
    dialogue_lines: List[DialogueLine]
    # dialogue speaker name -> voice profile name
    speaker_voice_map: Dict[str, str] = Field(default_factory=dict)
    sub_questions: List[MultipleChoiceQuestion] = Field(default_factory=list)


class WritingTask(_QuestionBase):
    kind: Literal["writing_task"] = "writing_task"
    task_description: Optional[str] = None


class SpeakingTask(_QuestionBase):
    kind: Literal["speaking_task"] = "speaking_task"
    task_description: Optional[str] = None


Question = Annotated[
    Union[
        MultipleChoiceQuestion,
        FillBlankQuestion,
        ReadingTask,
        ListeningTask,
        WritingTask,
        SpeakingTask,
    ],
    Field(discriminator="kind"),
]


# ============================================================================
# ANSWERS, RESULTS, REPORT
# ============================================================================

class StudentAnswer(BaseModel):
    question_id: str
    # Text, an option id, or a base64 audio payload for speaking
    answer_value: str = ""
    media_type: Optional[str] = None
    is_correct: Optional[bool] = None
    feedback: Optional[str] = None
    score: Optional[float] = None


class SectionResult(BaseModel):
    skill: Skill
    questions: List[Question]
    answers: List[StudentAnswer]
    score: Optional[float] = Field(default=None, ge=0, le=100)
    feedback: Optional[str] = None


class GradingResult(BaseModel):
    score: float
    feedback: str
    estimated_level: str = ""


class SkillSummary(BaseModel):
    skill: Skill
    score: Optional[float] = None
    achieved_level: Optional[str] = None
    strengths: str = ""
    weaknesses: str = ""
    recommendations: str = ""


class FinalReport(BaseModel):
    student_name: str
    assessed_level: ProficiencyLevel
    overall_estimated_level: str
    skill_summaries: List[SkillSummary]
    detailed_feedback: str
    level_progression_suggestion: str


class VoiceProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    gender: Literal["female", "male"]
    style_tag: str


# ============================================================================
# EXTERNAL COLLABORATORS
# ============================================================================

class Identity(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class AssessmentRecord(BaseModel):
    identity_id: str
    student_name: str
    timestamp: datetime
    target_level: ProficiencyLevel
    final_report: FinalReport


class ProfileUpsert(BaseModel):
    identity_id: str
    name: str
    email: Optional[str] = None
    last_assessment_timestamp: datetime
