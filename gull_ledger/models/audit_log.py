"""
Audit log model.

Records mutations an admin performed while acting for another user.
The impersonated user's balance pays for the change; the admin is
the one who is accountable for it.
"""

from datetime import datetime

from sqlalchemy import String, DateTime, Text, Integer
from sqlalchemy.orm import Mapped, mapped_column

from gull_ledger.models.base import Base, utc_now


class AuditLog(Base):
    """
    Immutable record of a system event.

    Audit logs are append-only. You never update or delete an
    audit record.
    """

    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    subject_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utc_now, nullable=False
    )
