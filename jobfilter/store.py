"""
Record store backed by SQLAlchemy.

All methods are synchronous and open their own session; async callers run
them through ``asyncio.to_thread``. Identifier queries return sets because
the reconciler only needs membership.
"""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError

from .database import (
    ClassificationRecord,
    Policy,
    ProfileSection,
    ScrapeUrl,
    create_db_engine,
    get_session_factory,
    init_database,
)
from .errors import RecordNotFoundError, StoreUnavailableError
from .models import Outcome, OutcomeStatus, PolicyVersion, utcnow


def record_values(outcome: Outcome) -> Dict[str, Any]:
    """Column values for the record of a finalized outcome."""
    return {
        "posting_id": outcome.posting.id,
        "policy_id": outcome.policy_id,
        "evaluated_at": outcome.evaluated_at,
        "accepted": outcome.accepted if outcome.status != OutcomeStatus.ERRORED else None,
        "error": outcome.error if outcome.status == OutcomeStatus.ERRORED else None,
        "title": outcome.posting.title,
        "company": outcome.posting.company,
        "payload": outcome.posting.fields,
    }


class RecordStore:
    """Classification records, policies, applicant profile and scrape URLs."""

    def __init__(self, database_url: str, create_tables: bool = True):
        self.engine = create_db_engine(database_url)
        self.Session = get_session_factory(self.engine)
        if create_tables:
            init_database(self.engine)

    def close(self) -> None:
        self.engine.dispose()

    # Liveness

    def _ping(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    async def ping(self, timeout: float) -> None:
        """Fail fast when the store cannot answer within ``timeout`` seconds."""
        try:
            await asyncio.wait_for(asyncio.to_thread(self._ping), timeout=timeout)
        except asyncio.TimeoutError:
            raise StoreUnavailableError(f"Store ping timed out after {timeout}s")
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Store ping failed: {e}") from e

    # Reconciliation queries

    def _ids(self, *criteria) -> Set[str]:
        with self.Session() as session:
            stmt = select(ClassificationRecord.posting_id).where(*criteria)
            return set(session.scalars(stmt))

    def error_ids(self) -> Set[str]:
        """Postings whose latest record is an error."""
        return self._ids(ClassificationRecord.error.is_not(None))

    def outdated_ids(self, policy_id: str, since: datetime) -> Set[str]:
        """Evaluated under ``policy_id`` before it was last modified."""
        return self._ids(
            ClassificationRecord.policy_id == policy_id,
            ClassificationRecord.evaluated_at < since,
        )

    def current_ids(self, policy_id: str, since: datetime) -> Set[str]:
        """Evaluated under ``policy_id`` at or after its last modification."""
        return self._ids(
            ClassificationRecord.policy_id == policy_id,
            ClassificationRecord.evaluated_at >= since,
        )

    def other_policy_ids(self, policy_id: str) -> Set[str]:
        return self._ids(ClassificationRecord.policy_id != policy_id)

    # Record writes

    def update_by_id(self, posting_id: str, values: Dict[str, Any]) -> None:
        """Overwrite the record of ``posting_id`` in place."""
        with self.Session() as session:
            updated = (
                session.query(ClassificationRecord)
                .filter_by(posting_id=posting_id)
                .update(values, synchronize_session=False)
            )
            if updated == 0:
                session.rollback()
                raise RecordNotFoundError(posting_id)
            session.commit()

    def insert(self, values: Dict[str, Any]) -> None:
        with self.Session() as session:
            session.add(ClassificationRecord(**values))
            session.commit()

    def get_record(self, posting_id: str) -> Optional[ClassificationRecord]:
        with self.Session() as session:
            return session.get(ClassificationRecord, posting_id)

    def list_records(
        self, policy_id: Optional[str] = None, status: Optional[OutcomeStatus] = None
    ) -> List[ClassificationRecord]:
        with self.Session() as session:
            query = session.query(ClassificationRecord)
            if policy_id:
                query = query.filter(ClassificationRecord.policy_id == policy_id)
            if status == OutcomeStatus.ERRORED:
                query = query.filter(ClassificationRecord.error.is_not(None))
            elif status is not None:
                query = query.filter(
                    ClassificationRecord.error.is_(None),
                    ClassificationRecord.accepted == (status == OutcomeStatus.ACCEPTED),
                )
            return query.order_by(ClassificationRecord.evaluated_at.desc()).all()

    # Policies

    def get_policy(self, policy_id: str) -> Optional[PolicyVersion]:
        with self.Session() as session:
            policy = session.get(Policy, policy_id)
            if policy is None:
                return None
            return PolicyVersion(policy.id, policy.text, policy.updated_at, policy.name)

    def save_policy(self, text: str, name: str = "", policy_id: Optional[str] = None) -> PolicyVersion:
        """Create a policy, or replace its text and bump ``updated_at``."""
        now = utcnow()
        with self.Session() as session:
            policy = session.get(Policy, policy_id) if policy_id else None
            if policy is None:
                policy = Policy(
                    id=policy_id or uuid.uuid4().hex,
                    name=name,
                    text=text,
                    created_at=now,
                    updated_at=now,
                )
                session.add(policy)
            else:
                policy.text = text
                policy.name = name or policy.name
                policy.updated_at = now
            session.commit()
            return PolicyVersion(policy.id, policy.text, policy.updated_at, policy.name)

    # Applicant profile

    def get_profile(self) -> Dict[str, Any]:
        with self.Session() as session:
            return {s.name: s.value for s in session.query(ProfileSection).all()}

    def set_profile_section(self, name: str, value: Any) -> None:
        with self.Session() as session:
            section = session.get(ProfileSection, name)
            if section is None:
                session.add(ProfileSection(name=name, value=value))
            else:
                section.value = value
            session.commit()

    # Scrape URLs

    def list_scrape_urls(self) -> List[str]:
        with self.Session() as session:
            return list(session.scalars(select(ScrapeUrl.url).order_by(ScrapeUrl.id)))

    def add_scrape_url(self, url: str) -> bool:
        """Add a URL; returns False if it was already present."""
        with self.Session() as session:
            if session.scalars(select(ScrapeUrl).where(ScrapeUrl.url == url)).first():
                return False
            session.add(ScrapeUrl(url=url))
            session.commit()
            return True
