"""
Content Generation

Builds per-skill generation requests for the content provider, validates the
structured replies and turns them into typed questions.

It handles:
- Skill-specific item-writer instructions with CEFR length bands
- Strict response schemas per skill shape (MCQ list, passage, dialogue, prompt)
- Deterministic question ids derived from skill, level and position
- Voice assignment for listening dialogue speakers

A reply that fails validation is rejected as a whole; no partial question set
is ever returned.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .errors import GenerationError, MalformedResponseError
from .parsing import extract_json_object
from .providers import ContentProvider
from .schemas import (
    CAMBRIDGE_BY_LEVEL,
    DialogueLine,
    ListeningTask,
    MultipleChoiceQuestion,
    ProficiencyLevel,
    Question,
    QuestionOption,
    ReadingTask,
    Skill,
    SpeakingTask,
    VoiceProfile,
    WritingTask,
)
from .voices import VOICE_REGISTRY, select_dialogue_voices

logger = logging.getLogger(__name__)

# Number of items generated per skill. Reading/listening/writing/speaking are
# a single task; reading and listening tasks carry their own sub-questions.
QUESTIONS_PER_SKILL: Dict[Skill, int] = {
    Skill.VOCABULARY: 3,
    Skill.GRAMMAR: 3,
    Skill.READING: 1,
    Skill.LISTENING: 1,
    Skill.WRITING: 1,
    Skill.SPEAKING: 1,
}
SUBQUESTIONS_PER_TASK = 2

MCQ_OPTION_KEYS: Tuple[str, ...] = ("A", "B", "C", "D")
SUB_QUESTION_OPTION_KEYS: Tuple[str, ...] = ("A", "B", "C")


def make_question_id(skill: Skill, level: ProficiencyLevel, index: int, sub_index: Optional[int] = None) -> str:
    """Stable id such as `reading-B1-0-1`; identical inputs always give the same id."""
    base = f"{skill.slug}-{level.value}-{index}"
    return base if sub_index is None else f"{base}-{sub_index}"


# ============================================================================
# LENGTH BANDS
# ============================================================================

def reading_length_band(level: ProficiencyLevel) -> str:
    if level in (ProficiencyLevel.A1, ProficiencyLevel.A2):
        return "80-120 words"
    if level == ProficiencyLevel.B1:
        return "120-180 words"
    if level == ProficiencyLevel.B2:
        return "180-240 words"
    return "240-300 words"


def writing_length_band(level: ProficiencyLevel) -> str:
    if level in (ProficiencyLevel.A1, ProficiencyLevel.A2):
        return "40-60 words"
    if level in (ProficiencyLevel.B1, ProficiencyLevel.B2):
        return "80-120 words"
    return "150-200 words"


def speaking_duration_band(level: ProficiencyLevel) -> str:
    if level in (ProficiencyLevel.A1, ProficiencyLevel.A2):
        return "30-60 seconds"
    if level in (ProficiencyLevel.B1, ProficiencyLevel.B2):
        return "1-2 minutes"
    return "2-3 minutes"


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

def _mcq_item_schema(option_keys: Sequence[str]) -> Dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": {
            "questionText": {"type": "STRING"},
            "options": {
                "type": "OBJECT",
                "properties": {key: {"type": "STRING"} for key in option_keys},
                "required": list(option_keys),
            },
            "correctAnswerKey": {"type": "STRING", "enum": list(option_keys)},
        },
        "required": ["questionText", "options", "correctAnswerKey"],
    }


def mcq_list_schema() -> Dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": {"questions": {"type": "ARRAY", "items": _mcq_item_schema(MCQ_OPTION_KEYS)}},
        "required": ["questions"],
    }


def reading_schema() -> Dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": {
            "passage": {"type": "STRING", "description": "The reading passage."},
            "questions": {
                "type": "ARRAY",
                "description": f"Array of {SUBQUESTIONS_PER_TASK} MCQ sub-questions.",
                "items": _mcq_item_schema(SUB_QUESTION_OPTION_KEYS),
            },
        },
        "required": ["passage", "questions"],
    }


def listening_schema(voices: Sequence[VoiceProfile]) -> Dict[str, Any]:
    first, second = voices[0], voices[1]
    return {
        "type": "OBJECT",
        "properties": {
            "dialogueTitle": {"type": "STRING", "nullable": True},
            "characterAssignment": {
                "type": "OBJECT",
                "properties": {
                    "character1Name": {"type": "STRING"},
                    "character1VoiceName": {"type": "STRING", "enum": [first.name]},
                    "character2Name": {"type": "STRING"},
                    "character2VoiceName": {"type": "STRING", "enum": [second.name]},
                },
                "required": ["character1Name", "character1VoiceName", "character2Name", "character2VoiceName"],
            },
            "lines": {
                "type": "ARRAY",
                "items": {
                    "type": "OBJECT",
                    "properties": {"speaker": {"type": "STRING"}, "line": {"type": "STRING"}},
                    "required": ["speaker", "line"],
                },
            },
            "questions": {"type": "ARRAY", "items": _mcq_item_schema(SUB_QUESTION_OPTION_KEYS)},
        },
        "required": ["characterAssignment", "lines", "questions"],
    }


def prompt_schema(*, description_required: bool) -> Dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": {
            "prompt": {"type": "STRING"},
            "taskDescription": {"type": "STRING", "nullable": not description_required},
        },
        "required": ["prompt", "taskDescription"] if description_required else ["prompt"],
    }


# ============================================================================
# INSTRUCTIONS
# ============================================================================

def _build_mcq_instructions(skill: Skill, level: ProficiencyLevel, count: int) -> str:
    exam = CAMBRIDGE_BY_LEVEL[level]
    if skill == Skill.VOCABULARY:
        focus = (
            "Do NOT ask the student to describe an image. All information needed to answer must be present in the "
            "question text and options. Focus on word meaning, usage in context, collocations, synonyms or antonyms."
        )
    else:
        focus = (
            "Focus on common grammatical structures, tenses, prepositions, articles or sentence construction "
            "appropriate for the level."
        )
    return (
        f"You are an expert language assessment creator specializing in {skill.value} for English learners.\n"
        f"Generate {count} multiple-choice {skill.value.lower()} questions for a CEFR {level.value} learner "
        f"(Cambridge {exam} range).\n"
        f"{focus}\n"
        "Each question has exactly 4 options keyed A-D and only ONE correct option; distractors must be plausible "
        "but unambiguously wrong.\n"
        f"Difficulty and vocabulary must be appropriate for CEFR {level.value}. Ensure correct grammar and spelling.\n"
        "Return ONLY JSON matching the schema: questions[] with questionText, options {A,B,C,D}, correctAnswerKey."
    )


def _build_reading_instructions(level: ProficiencyLevel) -> str:
    return (
        f"You are an expert ESL reading writer. Generate 1 reading comprehension task for a CEFR {level.value} learner "
        f"(Cambridge {CAMBRIDGE_BY_LEVEL[level]} range).\n"
        f"Write a self-contained passage of {reading_length_band(level)} on an accessible, contemporary topic. "
        "Avoid lists or bullet points.\n"
        f"Then write {SUBQUESTIONS_PER_TASK} multiple-choice questions answerable from the passage only, each with "
        "exactly 3 options keyed A-C and one correct option.\n"
        "All text in English. Return ONLY JSON: passage, questions[] with questionText, options {A,B,C}, correctAnswerKey."
    )


def _build_listening_instructions(level: ProficiencyLevel, voices: Sequence[VoiceProfile]) -> str:
    first, second = voices[0], voices[1]
    return (
        "You are an expert ESL listening item writer.\n"
        f"Pre-selected voices: VOICE_1 ({first.gender}, name '{first.name}', style '{first.style_tag}') and "
        f"VOICE_2 ({second.gender}, name '{second.name}', style '{second.style_tag}').\n"
        f"Generate 1 listening task for CEFR {level.value} (Cambridge {CAMBRIDGE_BY_LEVEL[level]} range): a short, "
        "natural dialogue between two characters with 2-4 turns per speaker, suited to the voices above.\n"
        "Assign character 1 to VOICE_1 and character 2 to VOICE_2 in characterAssignment. Every line's speaker must "
        "be exactly one of the two character names.\n"
        f"Add {SUBQUESTIONS_PER_TASK} multiple-choice questions about the dialogue, each with exactly 3 options keyed "
        "A-C and one correct option.\n"
        "All text in English. Return ONLY JSON matching the schema."
    )


def _build_writing_instructions(level: ProficiencyLevel) -> str:
    return (
        f"You are an expert language assessment creator. Generate 1 writing prompt for a CEFR {level.value} learner.\n"
        f"The prompt should encourage a text of {writing_length_band(level)} on an everyday, culturally neutral topic.\n"
        "Include a short taskDescription stating the expected length and what the answer should cover.\n"
        "All text in English. Return ONLY JSON with keys: prompt, taskDescription."
    )


def _build_speaking_instructions(level: ProficiencyLevel) -> str:
    return (
        f"You are an ESL speaking task writer. Generate 1 speaking prompt for a CEFR {level.value} learner.\n"
        f"It should encourage speech for about {speaking_duration_band(level)}. Use everyday, age-neutral topics and "
        "never refer to pictures.\n"
        "Optionally add a taskDescription with guidance on what a good answer includes.\n"
        "All text in English. Return ONLY JSON with keys: prompt, taskDescription (optional)."
    )


# ============================================================================
# PAYLOAD VALIDATION
# ============================================================================

def _require_str(data: Dict[str, Any], key: str, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedResponseError(f"{where}: missing or empty '{key}'")
    return value.strip()


def _require_list(data: Dict[str, Any], key: str, where: str, *, expected: Optional[int] = None) -> List[Any]:
    value = data.get(key)
    if not isinstance(value, list) or not value:
        raise MalformedResponseError(f"{where}: '{key}' must be a non-empty array")
    if expected is not None and len(value) != expected:
        raise MalformedResponseError(f"{where}: expected {expected} items in '{key}', got {len(value)}")
    return value


def _parse_mcq(
    item: Any,
    option_keys: Sequence[str],
    skill: Skill,
    level: ProficiencyLevel,
    index: int,
    sub_index: Optional[int] = None,
) -> MultipleChoiceQuestion:
    where = f"{skill.value} question {index}" + (f".{sub_index}" if sub_index is not None else "")
    if not isinstance(item, dict):
        raise MalformedResponseError(f"{where}: expected an object")
    question_text = _require_str(item, "questionText", where)
    options = item.get("options")
    if not isinstance(options, dict):
        raise MalformedResponseError(f"{where}: 'options' must be an object keyed by option id")
    parsed_options: List[QuestionOption] = []
    for key in option_keys:
        text = options.get(key)
        if not isinstance(text, str) or not text.strip():
            raise MalformedResponseError(f"{where}: option {key} missing")
        parsed_options.append(QuestionOption(id=key, text=text.strip()))
    correct = item.get("correctAnswerKey")
    if not isinstance(correct, str) or correct.strip() not in option_keys:
        raise MalformedResponseError(f"{where}: correctAnswerKey {correct!r} is not one of {list(option_keys)}")
    return MultipleChoiceQuestion(
        id=make_question_id(skill, level, index, sub_index),
        skill=skill,
        level=level,
        prompt_text=question_text,
        options=parsed_options,
        correct_option_id=correct.strip(),
    )


def _parse_payload(raw: str, skill: Skill) -> Dict[str, Any]:
    try:
        data = extract_json_object(raw)
    except ValueError as exc:
        raise MalformedResponseError(f"{skill.value}: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedResponseError(f"{skill.value}: expected a JSON object at the top level")
    return data


def parse_mcq_questions(raw: str, skill: Skill, level: ProficiencyLevel, count: int) -> List[Question]:
    data = _parse_payload(raw, skill)
    items = _require_list(data, "questions", skill.value, expected=count)
    return [_parse_mcq(item, MCQ_OPTION_KEYS, skill, level, idx) for idx, item in enumerate(items)]


def parse_reading_task(raw: str, level: ProficiencyLevel) -> List[Question]:
    skill = Skill.READING
    data = _parse_payload(raw, skill)
    passage = _require_str(data, "passage", skill.value)
    items = _require_list(data, "questions", skill.value, expected=SUBQUESTIONS_PER_TASK)
    return [
        ReadingTask(
            id=make_question_id(skill, level, 0),
            skill=skill,
            level=level,
            prompt_text="Read the passage below and answer the questions that follow.",
            passage=passage,
            sub_questions=[
                _parse_mcq(item, SUB_QUESTION_OPTION_KEYS, skill, level, 0, sub_idx)
                for sub_idx, item in enumerate(items)
            ],
        )
    ]


def parse_listening_task(raw: str, level: ProficiencyLevel, voices: Sequence[VoiceProfile]) -> List[Question]:
    skill = Skill.LISTENING
    data = _parse_payload(raw, skill)
    assignment = data.get("characterAssignment")
    if not isinstance(assignment, dict):
        raise MalformedResponseError("Listening: 'characterAssignment' must be an object")
    characters = [
        (_require_str(assignment, "character1Name", "Listening"), str(assignment.get("character1VoiceName") or "")),
        (_require_str(assignment, "character2Name", "Listening"), str(assignment.get("character2VoiceName") or "")),
    ]

    lines: List[DialogueLine] = []
    for idx, entry in enumerate(_require_list(data, "lines", skill.value)):
        if not isinstance(entry, dict):
            raise MalformedResponseError(f"Listening: line {idx} must be an object")
        lines.append(
            DialogueLine(
                speaker=_require_str(entry, "speaker", f"Listening line {idx}"),
                line=_require_str(entry, "line", f"Listening line {idx}"),
            )
        )

    items = _require_list(data, "questions", skill.value, expected=SUBQUESTIONS_PER_TASK)
    sub_questions = [
        _parse_mcq(item, SUB_QUESTION_OPTION_KEYS, skill, level, 0, sub_idx) for sub_idx, item in enumerate(items)
    ]

    title = data.get("dialogueTitle")
    title = title.strip() if isinstance(title, str) and title.strip() else None
    prompt_text = f'Listen to the dialogue titled "{title}" and answer the questions.' if title else (
        "Listen to the dialogue and answer the questions."
    )
    return [
        ListeningTask(
            id=make_question_id(skill, level, 0),
            skill=skill,
            level=level,
            prompt_text=prompt_text,
            dialogue_title=title,
            dialogue_lines=lines,
            speaker_voice_map=assign_speaker_voices(characters, lines, voices),
            sub_questions=sub_questions,
        )
    ]


def parse_prompt_task(raw: str, skill: Skill, level: ProficiencyLevel) -> List[Question]:
    data = _parse_payload(raw, skill)
    prompt = _require_str(data, "prompt", skill.value)
    description = data.get("taskDescription")
    if description is not None and not isinstance(description, str):
        raise MalformedResponseError(f"{skill.value}: 'taskDescription' must be a string")
    if skill == Skill.WRITING and not (description or "").strip():
        raise MalformedResponseError("Writing: missing or empty 'taskDescription'")
    description = (description or "").strip() or None
    task_cls = WritingTask if skill == Skill.WRITING else SpeakingTask
    return [
        task_cls(
            id=make_question_id(skill, level, 0),
            skill=skill,
            level=level,
            prompt_text=prompt,
            task_description=description,
        )
    ]


# ============================================================================
# VOICE ASSIGNMENT
# ============================================================================

def assign_speaker_voices(
    characters: Sequence[Tuple[str, str]],
    lines: Sequence[DialogueLine],
    voices: Sequence[VoiceProfile],
) -> Dict[str, str]:
    """
    Map every dialogue speaker to one of the two selected voice profiles.

    Character N from the reply's character assignment gets selected voice N
    (the reply's own voice name is honoured only when it is one of the
    selected voices and no other character holds it yet). A line speaker the assignment does not cover gets the
    first selected voice not already used, and the contract violation is logged.

    Args:
        characters: (character name, voice name) pairs from characterAssignment
        lines: Parsed dialogue lines
        voices: The two voice profiles selected for this dialogue

    Returns:
        Dict[str, str]: Speaker name -> voice profile name
    """
    selected_names = [v.name for v in voices]
    mapping: Dict[str, str] = {}
    for position, (name, voice_name) in enumerate(characters):
        if name in mapping:
            continue
        taken = set(mapping.values())
        expected = selected_names[min(position, len(selected_names) - 1)]
        if expected in taken:
            unused = [n for n in selected_names if n not in taken]
            expected = unused[0] if unused else expected
        chosen = voice_name.strip().lower()
        if chosen != expected and (chosen not in selected_names or chosen in taken):
            logger.warning(
                "Listening reply assigned voice %r to %r; using %r", voice_name, name, expected
            )
            chosen = expected
        mapping[name] = chosen

    for line in lines:
        if line.speaker in mapping:
            continue
        unused = [n for n in selected_names if n not in mapping.values()]
        fallback = unused[0] if unused else selected_names[0]
        logger.warning(
            "Listening speaker %r is not in characterAssignment; falling back to voice %r", line.speaker, fallback
        )
        mapping[line.speaker] = fallback
    return mapping


# ============================================================================
# ENTRY POINT
# ============================================================================

async def generate_questions(
    provider: ContentProvider,
    skill: Skill,
    level: ProficiencyLevel,
    *,
    rng: Optional[random.Random] = None,
    registry: Sequence[VoiceProfile] = VOICE_REGISTRY,
) -> List[Question]:
    """
    Generate the full question set for one skill section.

    Args:
        provider: Content provider used for the single generation call
        skill: Skill being assessed
        level: Target proficiency level
        rng: Random source for listening voice selection
        registry: Voice catalog for listening dialogues

    Returns:
        List[Question]: Validated questions with deterministic ids

    Raises:
        GenerationError: If the provider call itself fails
        MalformedResponseError: If the reply does not match the skill's schema
    """
    count = QUESTIONS_PER_SKILL[skill]
    voices: List[VoiceProfile] = []
    if skill in (Skill.VOCABULARY, Skill.GRAMMAR):
        instructions, schema = _build_mcq_instructions(skill, level, count), mcq_list_schema()
    elif skill == Skill.READING:
        instructions, schema = _build_reading_instructions(level), reading_schema()
    elif skill == Skill.LISTENING:
        voices = select_dialogue_voices(rng, registry)
        if len(voices) < 2:
            raise GenerationError("Voice registry is empty; cannot build a listening dialogue")
        instructions, schema = _build_listening_instructions(level, voices), listening_schema(voices)
    elif skill == Skill.WRITING:
        instructions, schema = _build_writing_instructions(level), prompt_schema(description_required=True)
    elif skill == Skill.SPEAKING:
        instructions, schema = _build_speaking_instructions(level), prompt_schema(description_required=False)
    else:
        raise GenerationError(f"Unsupported skill: {skill!r}")

    logger.info("Generating %d item(s) for %s at %s", count, skill.value, level.value)
    try:
        raw = await provider.generate_content(instructions, schema)
    except Exception as exc:
        raise GenerationError(f"Failed to generate {skill.value} questions: {exc}") from exc

    if skill in (Skill.VOCABULARY, Skill.GRAMMAR):
        return parse_mcq_questions(raw, skill, level, count)
    if skill == Skill.READING:
        return parse_reading_task(raw, level)
    if skill == Skill.LISTENING:
        return parse_listening_task(raw, level, voices)
    return parse_prompt_task(raw, skill, level)
