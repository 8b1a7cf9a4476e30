"""Swimmer, consent and parent profile models."""

import uuid
from datetime import date, datetime

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.billing_service.models.enums import SwimmerStatus, enum_values
from sqlalchemy import Boolean, Date, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, String, Text, UniqueConstraint, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.orm.attributes import get_history


class Swimmer(Base):
    __tablename__ = "swimmers"
    __table_args__ = (
        UniqueConstraint(
            "owner_id",
            "first_name",
            "last_name",
            "date_of_birth",
            name="uq_swimmer_identity_per_owner",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    submitted_by_email: Mapped[str | None] = mapped_column(
        String, index=True, nullable=True
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    gender: Mapped[str | None] = mapped_column(String(20), nullable=True)
    squad: Mapped[str | None] = mapped_column(String(50), nullable=True)
    medical_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[SwimmerStatus] = mapped_column(
        SAEnum(
            SwimmerStatus,
            name="swimmer_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=SwimmerStatus.PENDING,
        nullable=False,
    )
    registration_complete: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    payment_deferred: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self):
        return f"<Swimmer {self.full_name} {self.status.value}>"


class ConsentRecord(Base):
    """Consent given at registration. Rows are append-only."""

    __tablename__ = "registration_consents"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[str | None] = mapped_column(String, index=True, nullable=True)
    swimmer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("swimmers.id"), index=True, nullable=False
    )
    submitted_by_email: Mapped[str | None] = mapped_column(
        String, index=True, nullable=True
    )

    data_accuracy: Mapped[bool] = mapped_column(Boolean, nullable=False)
    code_of_conduct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    media_consent: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    consent_text: Mapped[str] = mapped_column(Text, nullable=False)
    consent_version: Mapped[str] = mapped_column(String(32), nullable=False)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )


_CONSENT_MUTABLE = {"owner_id"}


@event.listens_for(ConsentRecord, "before_update")
def _reject_consent_edits(mapper, connection, target):
    for attr in mapper.column_attrs:
        if attr.key in _CONSENT_MUTABLE:
            continue
        if get_history(target, attr.key).has_changes():
            raise ValueError(f"Consent records are immutable ({attr.key})")


class ParentProfile(Base):
    __tablename__ = "parent_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    account_id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    relationship: Mapped[str | None] = mapped_column(String(50), nullable=True)
    emergency_contact_name: Mapped[str | None] = mapped_column(
        String(200), nullable=True
    )
    emergency_contact_relationship: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )
    emergency_contact_phone: Mapped[str | None] = mapped_column(
        String(32), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<ParentProfile {self.email}>"
