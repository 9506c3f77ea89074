from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Integer
from sqlalchemy.orm import declarative_mixin


def utcnow() -> datetime:
    """Naive UTC timestamp; the ledger stores every timestamp as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@declarative_mixin
class TimestampMixin:
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

@declarative_mixin
class IdMixin:
    id = Column(Integer, primary_key=True, autoincrement=True)
