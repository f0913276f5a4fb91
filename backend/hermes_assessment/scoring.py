"""
Response Scoring

Rule-based grading for objective skills and provider-assisted grading for
Writing and Speaking. Every skill yields exactly one `SectionResult`.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from .errors import ScoringError
from .providers import GradingProvider
from .schemas import (
    FillBlankQuestion,
    ListeningTask,
    MultipleChoiceQuestion,
    ProficiencyLevel,
    Question,
    ReadingTask,
    SectionResult,
    Skill,
    SpeakingTask,
    StudentAnswer,
    WritingTask,
)
from .settings import settings

logger = logging.getLogger(__name__)

NO_RESPONSE_FEEDBACK = "No response provided."


def clamp_score(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def percent_correct(correct: int, total: int) -> float:
    """Share of correct items as a 0-100 score rounded to two decimals; 0 when nothing is gradable."""
    if total <= 0:
        return 0.0
    return round(clamp_score(correct / total * 100.0), 2)


def grade_objective(question: Question, answer: Optional[StudentAnswer]) -> bool:
    if answer is None:
        return False
    if isinstance(question, MultipleChoiceQuestion):
        return answer.answer_value == question.correct_option_id
    if isinstance(question, FillBlankQuestion):
        return answer.answer_value.strip().casefold() == question.correct_answer.strip().casefold()
    raise ScoringError(f"Question {question.id} of kind {question.kind!r} is not objectively gradable")


def gradable_items(questions: Sequence[Question]) -> List[Question]:
    """Reading and Listening grade the sub-questions of their task; other skills grade the questions themselves."""
    items: List[Question] = []
    for question in questions:
        if isinstance(question, (ReadingTask, ListeningTask)):
            items.extend(question.sub_questions)
        else:
            items.append(question)
    return items


def _score_objective(skill: Skill, questions: List[Question], answers: Sequence[StudentAnswer]) -> SectionResult:
    by_id: Dict[str, StudentAnswer] = {a.question_id: a for a in answers}
    items = gradable_items(questions)
    graded: List[StudentAnswer] = []
    correct = 0
    for item in items:
        submitted = by_id.get(item.id)
        is_correct = grade_objective(item, submitted)
        correct += int(is_correct)
        if submitted is None:
            graded.append(StudentAnswer(question_id=item.id, answer_value="", is_correct=False))
        else:
            graded.append(submitted.model_copy(update={"is_correct": is_correct}))
    score = percent_correct(correct, len(items))
    logger.info("%s scored %d/%d (%.2f)", skill.value, correct, len(items), score)
    return SectionResult(skill=skill, questions=questions, answers=graded, score=score)


async def _score_free_form(
    skill: Skill,
    questions: List[Question],
    answers: Sequence[StudentAnswer],
    grader: GradingProvider,
    level: ProficiencyLevel,
) -> SectionResult:
    if len(questions) != 1 or not isinstance(questions[0], (WritingTask, SpeakingTask)):
        raise ScoringError(f"{skill.value} expects exactly one task, got {len(questions)}")
    task = questions[0]
    submitted = next((a for a in answers if a.question_id == task.id), None)

    if submitted is None or not submitted.answer_value.strip():
        answer = StudentAnswer(
            question_id=task.id,
            answer_value="",
            feedback=NO_RESPONSE_FEEDBACK,
            score=0.0,
        )
        return SectionResult(skill=skill, questions=questions, answers=[answer], score=0.0, feedback=NO_RESPONSE_FEEDBACK)

    prompt = task.prompt_text
    if task.task_description:
        prompt = f"{prompt}\n{task.task_description}"
    media_type = None
    if skill == Skill.SPEAKING:
        media_type = submitted.media_type or settings.recording_mime_type
    try:
        result = await grader.grade_submission(prompt, submitted.answer_value, level, media_type=media_type)
    except Exception as exc:
        raise ScoringError(f"Failed to grade {skill.value} response: {exc}") from exc

    score = clamp_score(result.score)
    logger.info("%s graded %.2f (estimated level %r)", skill.value, score, result.estimated_level)
    answer = submitted.model_copy(update={"score": score, "feedback": result.feedback, "media_type": media_type})
    return SectionResult(skill=skill, questions=questions, answers=[answer], score=score, feedback=result.feedback)


async def score_section(
    skill: Skill,
    questions: List[Question],
    answers: Sequence[StudentAnswer],
    *,
    grader: GradingProvider,
    level: ProficiencyLevel,
) -> SectionResult:
    """
    Score one completed skill section.

    Args:
        skill: Skill of the section
        questions: Questions that were shown to the learner
        answers: Learner answers keyed by question id
        grader: Grading provider for Writing/Speaking
        level: Target level the learner is assessed at

    Returns:
        SectionResult: Score in [0, 100] with per-answer correctness or feedback

    Raises:
        ScoringError: If free-form grading fails
    """
    if skill in (Skill.WRITING, Skill.SPEAKING):
        return await _score_free_form(skill, questions, answers, grader, level)
    return _score_objective(skill, questions, answers)
