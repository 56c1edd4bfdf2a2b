"""Durable idempotency ledger of processed source records."""

import logging
from datetime import datetime, time as dt_time
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import sessionmaker

from leadsync.models import LedgerEntry, LedgerMetadata, LedgerStats, normalize_email
from leadsync.models.database import ProcessedLead, init_db, utcnow

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "sqlite": sqlite_insert,
    "postgresql": pg_insert,
}


class StateStore:
    """Ledger keyed by source record id, with a secondary email index.

    Writes are upserts resolved by the database's own ON CONFLICT
    primitive, so concurrent writers (other orchestrators, other replicas)
    can never create duplicate rows or hit a uniqueness violation.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory
        dialect = session_factory.kw["bind"].dialect.name
        if dialect not in _UPSERT_DIALECTS:
            raise ValueError(f"Ledger backend '{dialect}' has no native upsert support")
        self._insert = _UPSERT_DIALECTS[dialect]

    @classmethod
    def from_url(cls, db_url: Optional[str] = None) -> "StateStore":
        store = cls(init_db(db_url))
        logger.info(f"State store initialized ({store._session_factory.kw['bind'].url.render_as_string()})")
        return store

    async def is_processed(self, record_id: str) -> bool:
        """Check if a source record has already been processed."""
        with self._session_factory() as session:
            found = session.execute(
                select(ProcessedLead.id).where(ProcessedLead.record_id == record_id).limit(1)
            ).first()
        return found is not None

    async def is_email_processed(self, email: Optional[str]) -> bool:
        """Check if any record with this email has been processed."""
        email = normalize_email(email)
        if not email:
            return False

        with self._session_factory() as session:
            found = session.execute(
                select(ProcessedLead.id).where(ProcessedLead.email == email).limit(1)
            ).first()
        return found is not None

    async def mark_processed(self, record_id: str, metadata: Optional[LedgerMetadata] = None):
        """Record a processed source record (INSERT OR REPLACE on record_id)."""
        metadata = metadata or LedgerMetadata()
        now = utcnow()
        row = {
            "record_id": record_id,
            "email": normalize_email(metadata.email),
            "owner": metadata.owner,
            "destination": metadata.destination,
            "lead_source": metadata.lead_source,
            "processed_at": now,
            "created_at": now,
            "updated_at": now,
        }

        stmt = self._insert(ProcessedLead).values(**row)
        stmt = stmt.on_conflict_do_update(
            index_elements=[ProcessedLead.record_id],
            set_={
                "email": stmt.excluded.email,
                "owner": stmt.excluded.owner,
                "destination": stmt.excluded.destination,
                "lead_source": stmt.excluded.lead_source,
                "processed_at": stmt.excluded.processed_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )

        with self._session_factory() as session:
            session.execute(stmt)
            session.commit()

        logger.debug(f"Marked record {record_id} as processed (destination={metadata.destination})")

    async def remove_processed(self, record_id: str) -> bool:
        """Remove a ledger entry so the record can be reprocessed."""
        with self._session_factory() as session:
            result = session.execute(
                delete(ProcessedLead).where(ProcessedLead.record_id == record_id)
            )
            session.commit()
        removed = result.rowcount > 0
        if removed:
            logger.info(f"Removed record {record_id} from ledger")
        return removed

    async def get_entry(self, record_id: str) -> Optional[LedgerEntry]:
        with self._session_factory() as session:
            row = session.execute(
                select(ProcessedLead).where(ProcessedLead.record_id == record_id)
            ).scalar_one_or_none()
            return LedgerEntry.model_validate(row) if row else None

    async def get_processed_by_owner(self, owner: str) -> list[LedgerEntry]:
        """Ledger entries for one owner, newest first."""
        with self._session_factory() as session:
            rows = session.execute(
                select(ProcessedLead)
                .where(ProcessedLead.owner == owner)
                .order_by(ProcessedLead.processed_at.desc())
            ).scalars().all()
            return [LedgerEntry.model_validate(r) for r in rows]

    async def get_recently_processed(self, limit: int = 100) -> list[LedgerEntry]:
        with self._session_factory() as session:
            rows = session.execute(
                select(ProcessedLead)
                .order_by(ProcessedLead.processed_at.desc())
                .limit(limit)
            ).scalars().all()
            return [LedgerEntry.model_validate(r) for r in rows]

    async def count(self) -> int:
        with self._session_factory() as session:
            return session.execute(select(func.count(ProcessedLead.id))).scalar_one()

    async def stats(self) -> LedgerStats:
        """Total entries, entries per owner, and entries processed today (UTC)."""
        today_start = datetime.combine(utcnow().date(), dt_time.min)

        with self._session_factory() as session:
            total = session.execute(select(func.count(ProcessedLead.id))).scalar_one()

            by_owner_rows = session.execute(
                select(ProcessedLead.owner, func.count(ProcessedLead.id))
                .group_by(ProcessedLead.owner)
            ).all()

            today = session.execute(
                select(func.count(ProcessedLead.id))
                .where(ProcessedLead.processed_at >= today_start)
            ).scalar_one()

        return LedgerStats(
            total=total,
            by_owner={(owner or "unknown"): count for owner, count in by_owner_rows},
            today=today,
        )

    def close(self):
        """Dispose of the underlying connection pool."""
        self._session_factory.kw["bind"].dispose()
        logger.info("State store connection closed")
