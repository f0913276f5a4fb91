from __future__ import annotations
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text
from .db import Base


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is username; it doubles as the learner identity id
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	display_name = Column(String(256), nullable=True)
	email = Column(String(256), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# JWT `jti`; a token is only accepted while its row exists
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), nullable=True, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class AssessmentRecordRow(Base):
	__tablename__ = "assessment_records"
	id = Column(Integer, primary_key=True, autoincrement=True)
	identity_id = Column(String(128), nullable=False, index=True)
	student_name = Column(String(256), nullable=False)
	target_level = Column(String(8), nullable=False)
	overall_estimated_level = Column(String(64), nullable=True)
	report_json = Column(Text, nullable=False)  # FinalReport snapshot
	assessed_at = Column(DateTime, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserProfile(Base):
	__tablename__ = "user_profiles"
	identity_id = Column(String(128), primary_key=True)
	name = Column(String(256), nullable=False)
	email = Column(String(256), nullable=True)
	last_assessment_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
