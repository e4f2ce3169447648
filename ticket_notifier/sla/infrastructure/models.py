"""
SLA Infrastructure Models
==========================

SQLAlchemy ORM models for the tracking tables.

Both tables are key -> JSON document maps; the document is the entity's
to_dict() form, the same one the JSON file backend stores.
"""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from ticket_notifier.infrastructure.database import Base


class SLATrackingModel(Base):
    """
    Database model for SLA tracking records.

    Maps to the 'sla_tracking' table.
    """
    __tablename__ = "sla_tracking"

    ticket_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )


class AssignmentTrackingModel(Base):
    """
    Database model for assignment tracking records.

    Maps to the 'assignment_tracking' table.
    """
    __tablename__ = "assignment_tracking"

    ticket_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[dict] = mapped_column(JSON, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
