"""SQLAlchemy database models and setup."""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Index,
    create_engine,
)
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from leadsync.config import settings

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how SQLite stores DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ProcessedLead(Base):
    """Idempotency ledger: one row per source record pushed (or found) downstream."""

    __tablename__ = "processed_leads"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(String(255), unique=True, nullable=False)
    email = Column(String(320), index=True)  # lower-cased, not unique
    owner = Column(String(255))
    destination = Column(String(255))  # campaign id
    lead_source = Column(String(255))

    processed_at = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_processed_leads_owner", "owner"),
        Index("idx_processed_leads_processed_at", "processed_at"),
    )


# Database initialization
def init_db(db_url: Optional[str] = None) -> sessionmaker:
    """Initialize database and return session maker."""
    url = db_url or settings.database_url
    kwargs = {}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            # Keep one shared connection so every session sees the same in-memory DB
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, echo=False, **kwargs)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine)
