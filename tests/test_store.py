from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from hermes_assessment.db import init_db, make_engine
from hermes_assessment.errors import PersistenceError
from hermes_assessment.schemas import AssessmentRecord, FinalReport, ProficiencyLevel, ProfileUpsert
from hermes_assessment.store import SqlAssessmentStore


def _report(level: str = "B1") -> FinalReport:
    return FinalReport(
        student_name="Maria",
        assessed_level=ProficiencyLevel.B1,
        overall_estimated_level=level,
        skill_summaries=[],
        detailed_feedback="Well done.",
        level_progression_suggestion="Keep going.",
    )


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, future=True)


async def test_saved_reports_are_listed_newest_first(session_factory):
    store = SqlAssessmentStore(session_factory)
    for day, level in ((1, "A2"), (2, "B1")):
        await store.save_assessment(
            AssessmentRecord(
                identity_id="learner-1",
                student_name="Maria",
                timestamp=datetime(2026, 3, day, tzinfo=timezone.utc),
                target_level=ProficiencyLevel.B1,
                final_report=_report(level),
            )
        )
    reports = store.list_reports("learner-1")
    assert [r.overall_estimated_level for r in reports] == ["B1", "A2"]
    assert store.list_reports("someone-else") == []


async def test_profile_upsert_updates_existing_row(session_factory):
    store = SqlAssessmentStore(session_factory)
    first = datetime(2026, 3, 1, tzinfo=timezone.utc)
    second = datetime(2026, 3, 5, tzinfo=timezone.utc)
    await store.upsert_profile(ProfileUpsert(identity_id="learner-1", name="Maria", email="m@example.com", last_assessment_timestamp=first))
    await store.upsert_profile(ProfileUpsert(identity_id="learner-1", name="Maria S.", last_assessment_timestamp=second))
    profile = store.get_profile("learner-1")
    assert profile.name == "Maria S."
    assert profile.email == "m@example.com"
    assert profile.last_assessment_at == second.replace(tzinfo=None)


async def test_database_errors_become_persistence_errors():
    engine = make_engine("sqlite://")  # no tables created
    store = SqlAssessmentStore(sessionmaker(bind=engine, future=True))
    with pytest.raises(PersistenceError):
        await store.save_assessment(
            AssessmentRecord(
                identity_id="learner-1",
                student_name="Maria",
                timestamp=datetime.now(timezone.utc),
                target_level=ProficiencyLevel.B1,
                final_report=_report(),
            )
        )
    with pytest.raises(PersistenceError):
        await store.upsert_profile(
            ProfileUpsert(identity_id="learner-1", name="Maria", last_assessment_timestamp=datetime.now(timezone.utc))
        )
