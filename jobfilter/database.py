"""
Database schema and connection management.

Uses SQLAlchemy; SQLite by default. Sessions are short-lived and one per
operation so concurrent writers never share one.
"""

from pathlib import Path
from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker

from .models import utcnow

Base = declarative_base()


class ClassificationRecord(Base):
    """Latest classification of one posting. Re-evaluation overwrites it."""

    __tablename__ = "classifications"

    posting_id = Column(String, primary_key=True)
    policy_id = Column(String, nullable=False, index=True)
    evaluated_at = Column(DateTime, nullable=False, index=True)
    accepted = Column(Boolean, nullable=True)  # NULL when errored
    error = Column(Text, nullable=True)
    title = Column(String, nullable=False, default="")
    company = Column(String, nullable=False, default="")
    payload = Column(JSON, nullable=False, default=dict)


class Policy(Base):
    """Classification criteria; ``updated_at`` versions it."""

    __tablename__ = "policies"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, default="")
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class ProfileSection(Base):
    """One named section of the applicant profile (contact, skills, ...)."""

    __tablename__ = "profile_sections"

    name = Column(String, primary_key=True)
    value = Column(JSON, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class ScrapeUrl(Base):
    """Search URL handed to the scraper."""

    __tablename__ = "scrape_urls"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String, nullable=False, unique=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


def create_db_engine(database_url: str) -> Engine:
    """
    Create an engine for ``database_url``.

    For SQLite files the parent directory is created and connections may
    cross threads (writes run in worker threads).
    """
    url = make_url(database_url)
    connect_args = {}
    if url.get_backend_name() == "sqlite":
        connect_args = {"check_same_thread": False, "timeout": 30}
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(database_url, connect_args=connect_args)


def init_database(engine: Engine) -> None:
    """Create all tables that do not exist yet."""
    Base.metadata.create_all(engine)


def get_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)
