from __future__ import annotations
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool
from .settings import settings


DATABASE_URL = settings.database_url or "sqlite:///./hermes.db"


def make_engine(url: str):
	connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
	if url in ("sqlite://", "sqlite:///:memory:"):
		# One shared connection so every session sees the same in-memory database
		return create_engine(url, connect_args=connect_args, poolclass=StaticPool, future=True)
	return create_engine(url, connect_args=connect_args, future=True)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
Base = declarative_base()


def get_db():
	db = SessionLocal()
	try:
		yield db
	finally:
		db.close()


def init_db(bind=None) -> None:
	# Import models so their tables are registered on Base.metadata
	from . import models  # noqa: F401

	Base.metadata.create_all(bind=bind or engine)
