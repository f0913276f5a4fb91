import json

import pytest

from hermes_assessment.errors import ReportSynthesisError
from hermes_assessment.report import (
    UNDETERMINED_SUGGESTION,
    find_level_token,
    level_progression_suggestion,
    synthesize_report,
)
from hermes_assessment.schemas import ProficiencyLevel, SectionResult, Skill

from conftest import report_payload

B1 = ProficiencyLevel.B1


@pytest.mark.parametrize(
    "text, expected",
    [
        ("B1", ProficiencyLevel.B1),
        ("High b2", ProficiencyLevel.B2),
        ("Between A2 and B1", ProficiencyLevel.A2),
        ("B2, with several B1 features", ProficiencyLevel.B1),
        ("C1 reading, A2 speaking", ProficiencyLevel.A2),
        ("B12", None),
        ("AB1", None),
        ("", None),
        ("intermediate", None),
    ],
)
def test_find_level_token(text, expected):
    assert find_level_token(text) == expected


def test_higher_estimate_suggests_advancing():
    suggestion = level_progression_suggestion("B2", B1)
    assert "moving up" in suggestion and "B2" in suggestion


def test_lowest_level_named_in_the_estimate_decides():
    suggestion = level_progression_suggestion("B2, with several B1 features", B1)
    assert "moving up" not in suggestion
    assert suggestion == level_progression_suggestion("B1", B1)


def test_lower_estimate_suggests_review():
    suggestion = level_progression_suggestion("A2", B1)
    assert "reviewing the fundamentals of level A2" in suggestion
    assert "B1" in suggestion


def test_equal_estimate_branches_on_qualifiers():
    assert "strong command" in level_progression_suggestion("High B1", B1)
    assert "strong command" in level_progression_suggestion("Upper B1", B1)
    assert "consolidate" in level_progression_suggestion("Low B1", B1)
    assert "consistently" in level_progression_suggestion("B1", B1)


def test_no_token_gives_fixed_message():
    assert level_progression_suggestion("Intermediate", B1) == UNDETERMINED_SUGGESTION


def _results():
    return [
        SectionResult(skill=Skill.VOCABULARY, questions=[], answers=[], score=100),
        SectionResult(skill=Skill.WRITING, questions=[], answers=[], score=72, feedback="Good linking"),
    ]


async def test_report_is_built_from_provider_payload(provider):
    report = await synthesize_report(provider, "Maria", _results(), B1)
    assert report.student_name == "Maria"
    assert report.assessed_level == B1
    assert report.overall_estimated_level == "B1"
    assert [s.skill for s in report.skill_summaries] == [Skill.VOCABULARY, Skill.WRITING]
    assert "consistently" in report.level_progression_suggestion


async def test_unknown_skills_are_dropped(provider):
    payload = json.loads(report_payload())
    payload["skillSummaries"].append({"skill": "Pronunciation", "strengths": "", "weaknesses": "", "recommendations": ""})
    provider.overrides["report"] = json.dumps(payload)
    report = await synthesize_report(provider, "Maria", _results(), B1)
    assert Skill.VOCABULARY in [s.skill for s in report.skill_summaries]
    assert len(report.skill_summaries) == 2


@pytest.mark.parametrize("override", [RuntimeError("down"), "no json here", json.dumps({"overallEstimatedLevel": "B1"})])
async def test_failures_raise_report_synthesis_error(provider, override):
    provider.overrides["report"] = override
    with pytest.raises(ReportSynthesisError):
        await synthesize_report(provider, "Maria", _results(), B1)
