from __future__ import annotations
import logging
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import SessionLocal
from .errors import PersistenceError
from .models import AssessmentRecordRow, UserProfile
from .schemas import AssessmentRecord, FinalReport, ProfileUpsert

logger = logging.getLogger(__name__)


def _naive_utc(value):
	# SQLite DateTime columns store naive values
	return value.replace(tzinfo=None) if value is not None and value.tzinfo is not None else value


class SqlAssessmentStore:
	"""Assessment store backed by the SQLAlchemy session factory."""

	def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
		self._session_factory = session_factory

	async def save_assessment(self, record: AssessmentRecord) -> None:
		db = self._session_factory()
		try:
			db.add(
				AssessmentRecordRow(
					identity_id=record.identity_id,
					student_name=record.student_name,
					target_level=record.target_level.value,
					overall_estimated_level=record.final_report.overall_estimated_level[:64],
					report_json=record.final_report.model_dump_json(),
					assessed_at=_naive_utc(record.timestamp),
				)
			)
			db.commit()
		except SQLAlchemyError as exc:
			db.rollback()
			raise PersistenceError(f"Could not save assessment: {exc}") from exc
		finally:
			db.close()
		logger.info("Saved assessment for %s at %s", record.identity_id, record.target_level.value)

	async def upsert_profile(self, profile: ProfileUpsert) -> None:
		db = self._session_factory()
		try:
			row = db.get(UserProfile, profile.identity_id)
			if row is None:
				row = UserProfile(identity_id=profile.identity_id)
			row.name = profile.name
			if profile.email:
				row.email = profile.email
			row.last_assessment_at = _naive_utc(profile.last_assessment_timestamp)
			db.add(row)
			db.commit()
		except SQLAlchemyError as exc:
			db.rollback()
			raise PersistenceError(f"Could not update profile: {exc}") from exc
		finally:
			db.close()

	def list_reports(self, identity_id: str, limit: int = 20) -> List[FinalReport]:
		"""Most recent reports first."""
		db = self._session_factory()
		try:
			rows = db.execute(
				select(AssessmentRecordRow)
				.where(AssessmentRecordRow.identity_id == identity_id)
				.order_by(AssessmentRecordRow.assessed_at.desc(), AssessmentRecordRow.id.desc())
				.limit(limit)
			).scalars().all()
			return [FinalReport.model_validate_json(r.report_json) for r in rows]
		except SQLAlchemyError as exc:
			raise PersistenceError(f"Could not load assessments: {exc}") from exc
		finally:
			db.close()

	def get_profile(self, identity_id: str) -> Optional[UserProfile]:
		db = self._session_factory()
		try:
			return db.get(UserProfile, identity_id)
		finally:
			db.close()
