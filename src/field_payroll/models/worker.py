"""Worker reference data read by the settlement core."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from field_payroll.models.base import Base, TimestampMixin

NATIONALITIES = ("local", "foreigner", "foreigner_no_passport")


class Worker(Base, TimestampMixin):
    """Field worker; nationality selects which deduction rules apply."""

    __tablename__ = "worker"

    worker_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    nationality: Mapped[str] = mapped_column(String, nullable=False, default="local")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "nationality IN ('local', 'foreigner', 'foreigner_no_passport')",
            name="worker_nationality_check",
        ),
    )
