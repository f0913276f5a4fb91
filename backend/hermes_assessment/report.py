"""
Report Synthesis

Aggregates section results into a `FinalReport` via the content provider and
derives a level-progression suggestion from the provider's free-text level.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .errors import ReportSynthesisError
from .parsing import extract_json_object
from .providers import ContentProvider
from .schemas import (
    LEVEL_ORDER,
    FinalReport,
    ProficiencyLevel,
    SectionResult,
    Skill,
    SkillSummary,
)
from .scoring import gradable_items

logger = logging.getLogger(__name__)

# Levels are tried in A1..C2 order; a token glued to other letters or digits does not count, e.g. "B12"
_LEVEL_TOKENS = [(level, re.compile(r"(?<![A-Z])" + level.value + r"(?!\d)")) for level in LEVEL_ORDER]

UNDETERMINED_SUGGESTION = "A level progression suggestion could not be determined from the estimated level."

REPORT_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "overallEstimatedLevel": {"type": "STRING"},
        "skillSummaries": {
            "type": "ARRAY",
            "items": {
                "type": "OBJECT",
                "properties": {
                    "skill": {"type": "STRING", "enum": [s.value for s in Skill]},
                    "score": {"type": "NUMBER", "nullable": True},
                    "achievedLevel": {"type": "STRING", "nullable": True},
                    "strengths": {"type": "STRING"},
                    "weaknesses": {"type": "STRING"},
                    "recommendations": {"type": "STRING"},
                },
                "required": ["skill", "strengths", "weaknesses", "recommendations"],
            },
        },
        "detailedFeedback": {"type": "STRING"},
    },
    "required": ["overallEstimatedLevel", "skillSummaries", "detailedFeedback"],
}


def find_level_token(text: Optional[str]) -> Optional[ProficiencyLevel]:
    if not text:
        return None
    upper = text.upper()
    for level, pattern in _LEVEL_TOKENS:
        if pattern.search(upper):
            return level
    return None


def level_progression_suggestion(estimated_text: str, assessed: ProficiencyLevel) -> str:
    """
    Turn the provider's estimated level into advice relative to the assessed level.

    Higher estimate suggests advancing, lower suggests reviewing fundamentals,
    equal suggests consolidating with wording shaded by "high"/"upper" or "low"
    qualifiers in the estimate. This is a text heuristic over free-form output.
    """
    estimated = find_level_token(estimated_text)
    if estimated is None:
        return UNDETERMINED_SUGGESTION
    shown = estimated_text.strip()
    if estimated.ordinal > assessed.ordinal:
        return (
            f"Excellent performance! Based on your results (estimated as {shown}), we suggest moving up to "
            f"level {estimated.value}. Keep it up!"
        )
    if estimated.ordinal < assessed.ordinal:
        return (
            f"Your performance (estimated as {shown}) suggests reviewing the fundamentals of level {estimated.value} "
            f"or strengthening the foundations of level {assessed.value} before attempting a more advanced level."
        )
    lowered = shown.lower()
    if "high" in lowered or "upper" in lowered:
        return (
            f"Very good! You show a strong command of level {assessed.value} (estimated as {shown}). "
            "Consider extra challenges at this level or get ready to move up."
        )
    if "low" in lowered:
        return (
            f"You are progressing within level {assessed.value} (estimated as {shown}). Keep practising the areas "
            "for improvement to consolidate this level."
        )
    return (
        f"You are performing consistently at level {assessed.value} (estimated as {shown}). Keep consolidating your "
        "skills and explore more complex topics within this level."
    )


def summarize_section(result: SectionResult) -> str:
    score = f"{result.score:.0f}%" if result.score is not None else "N/A"
    details = f"Skill: {result.skill.value}, Score: {score}."
    if result.skill in (Skill.WRITING, Skill.SPEAKING):
        if result.feedback:
            details += f' Grader feedback: "{result.feedback}".'
        return details
    total = len(gradable_items(result.questions))
    if total:
        correct = sum(1 for a in result.answers if a.is_correct)
        details += f" Correct answers: {correct} out of {total}."
    return details


def _build_report_instructions(student_name: str, results: Sequence[SectionResult], level: ProficiencyLevel) -> str:
    summary = "\n".join(summarize_section(r) for r in results)
    return (
        f"A student named {student_name} completed an English assessment targeted at CEFR level {level.value}.\n"
        f"Performance summary:\n{summary}\n\n"
        "Write a comprehensive report: the overall estimated CEFR level (e.g. 'B1', 'High A2'), one summary per skill "
        "with strengths, weaknesses and recommendations, and overall detailed feedback. Keep the tone professional "
        "and encouraging.\n"
        "Return ONLY JSON with keys: overallEstimatedLevel, skillSummaries, detailedFeedback."
    )


def _parse_summaries(items: List[Any]) -> List[SkillSummary]:
    known = {s.value: s for s in Skill}
    summaries: List[SkillSummary] = []
    for item in items:
        if not isinstance(item, dict):
            raise ReportSynthesisError("Report skill summary is not an object")
        skill = known.get(str(item.get("skill") or ""))
        if skill is None:
            logger.warning("Dropping report summary for unknown skill %r", item.get("skill"))
            continue
        summaries.append(
            SkillSummary(
                skill=skill,
                score=item.get("score"),
                achieved_level=item.get("achievedLevel"),
                strengths=item.get("strengths") or "",
                weaknesses=item.get("weaknesses") or "",
                recommendations=item.get("recommendations") or "",
            )
        )
    return summaries


async def synthesize_report(
    provider: ContentProvider,
    student_name: str,
    section_results: Sequence[SectionResult],
    assessed_level: ProficiencyLevel,
) -> FinalReport:
    """
    Build the final report for a finished session.

    Raises:
        ReportSynthesisError: On provider failure or an unusable payload
    """
    instructions = _build_report_instructions(student_name, section_results, assessed_level)
    try:
        raw = await provider.generate_content(instructions, REPORT_SCHEMA)
    except Exception as exc:
        raise ReportSynthesisError(f"Failed to generate the final report: {exc}") from exc

    try:
        data = extract_json_object(raw)
    except ValueError as exc:
        raise ReportSynthesisError(f"Report payload is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ReportSynthesisError("Report payload is not a JSON object")

    overall = data.get("overallEstimatedLevel")
    feedback = data.get("detailedFeedback")
    items = data.get("skillSummaries")
    if not isinstance(overall, str) or not isinstance(feedback, str) or not isinstance(items, list):
        raise ReportSynthesisError("Report payload is missing overallEstimatedLevel, skillSummaries or detailedFeedback")

    try:
        return FinalReport(
            student_name=student_name,
            assessed_level=assessed_level,
            overall_estimated_level=overall.strip(),
            skill_summaries=_parse_summaries(items),
            detailed_feedback=feedback,
            level_progression_suggestion=level_progression_suggestion(overall, assessed_level),
        )
    except ValidationError as exc:
        raise ReportSynthesisError(f"Report payload failed validation: {exc}") from exc
