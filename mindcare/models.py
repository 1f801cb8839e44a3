from datetime import datetime, timezone

from sqlalchemy import (
    DDL,
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
    event,
    inspect,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from .database import Base
from .errors import InvalidTransition

APPLICATION_STATUSES = ("pending", "approved", "rejected")
APPOINTMENT_STATUSES = ("scheduled", "completed", "cancelled")
# Statuses that occupy the provider's calendar
BLOCKING_APPOINTMENT_STATUSES = ("scheduled", "completed")
LEDGER_TYPES = ("earning", "withdrawal")
LEDGER_STATUSES = ("pending", "completed", "cancelled")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _in_list(column: str, values: tuple) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp stored as UTC on every backend.

    SQLite drops tzinfo on the way in and out, so values are normalised to UTC
    when bound and tagged with UTC when loaded.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            raise ValueError("Naive datetime passed to a timezone-aware column")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Application(Base):
    __tablename__ = "therapist_applications"
    __table_args__ = (
        CheckConstraint(_in_list("status", APPLICATION_STATUSES), name="ck_applications_status"),
        CheckConstraint("years_experience >= 0", name="ck_applications_experience"),
        # One live application per applicant; archived (superseded) rows are kept for audit
        Index(
            "uq_applications_active_applicant",
            "applicant_uid",
            unique=True,
            sqlite_where=text("archived_at IS NULL"),
            postgresql_where=text("archived_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    applicant_uid = Column(String(128), nullable=False, index=True)

    full_name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True)
    specialization = Column(String(255), nullable=False)
    license_number = Column(String(100), nullable=False)
    years_experience = Column(Integer, nullable=False, default=0)
    education = Column(Text, nullable=False)
    bio = Column(Text, nullable=True)
    certifications = Column(JSON, default=list, nullable=False)
    languages = Column(JSON, default=list, nullable=False)

    # References into external file storage (opaque keys/URLs)
    license_document_url = Column(String(500), nullable=True)
    cv_document_url = Column(String(500), nullable=True)
    certificate_urls = Column(JSON, default=list, nullable=False)

    # Review workflow: pending → approved | rejected (both terminal)
    status = Column(String(20), nullable=False, default="pending", index=True)
    admin_notes = Column(Text, nullable=True)
    applied_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)
    reviewed_at = Column(UTCDateTime(timezone=True), nullable=True)
    reviewed_by = Column(String(128), nullable=True)

    # Non-owning identifier of the provider produced on approval
    provider_id = Column(Integer, nullable=True)
    archived_at = Column(UTCDateTime(timezone=True), nullable=True)

    updated_at = Column(UTCDateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Provider(Base):
    __tablename__ = "providers"
    __table_args__ = (CheckConstraint("session_price >= 0", name="ck_providers_price"),)

    id = Column(Integer, primary_key=True, index=True)
    applicant_uid = Column(String(128), unique=True, nullable=False, index=True)
    application_id = Column(Integer, ForeignKey("therapist_applications.id"), nullable=True)

    display_name = Column(String(255), nullable=False)
    specialization = Column(String(255), nullable=False)
    bio = Column(Text, nullable=True)
    languages = Column(JSON, default=list, nullable=False)
    session_price = Column(Numeric(10, 2), nullable=False)
    timezone = Column(String(64), nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)

    created_at = Column(UTCDateTime(timezone=True), default=utcnow)
    updated_at = Column(UTCDateTime(timezone=True), default=utcnow, onupdate=utcnow)

    windows = relationship("AvailabilityWindow", back_populates="provider", cascade="all, delete-orphan")
    appointments = relationship("Appointment", back_populates="provider")


class ProviderReview(Base):
    """Client ratings, written by the community layer and only read here"""

    __tablename__ = "provider_reviews"
    __table_args__ = (CheckConstraint("rating BETWEEN 1 AND 5", name="ck_reviews_rating"),)

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    reviewer_uid = Column(String(128), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(UTCDateTime(timezone=True), default=utcnow)


class AvailabilityWindow(Base):
    __tablename__ = "availability_windows"
    __table_args__ = (
        UniqueConstraint("provider_id", "day_of_week", "start_time", name="uq_windows_natural_key"),
        CheckConstraint("start_time < end_time", name="ck_windows_range"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_windows_day"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday ... 6 = Saturday
    start_time = Column(Time, nullable=False)  # wall clock in the provider's timezone
    end_time = Column(Time, nullable=False)
    is_enabled = Column(Boolean, default=True, nullable=False)

    created_at = Column(UTCDateTime(timezone=True), default=utcnow)
    updated_at = Column(UTCDateTime(timezone=True), default=utcnow, onupdate=utcnow)

    provider = relationship("Provider", back_populates="windows")


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint(_in_list("status", APPOINTMENT_STATUSES), name="ck_appointments_status"),
        CheckConstraint("duration_minutes > 0", name="ck_appointments_duration"),
        CheckConstraint("ends_at > starts_at", name="ck_appointments_range"),
        CheckConstraint("price >= 0", name="ck_appointments_price"),
        Index("ix_appointments_provider_start", "provider_id", "starts_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    client_uid = Column(String(128), nullable=False, index=True)

    starts_at = Column(UTCDateTime(timezone=True), nullable=False)
    ends_at = Column(UTCDateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    # Status workflow: scheduled → completed | cancelled (both terminal)
    status = Column(String(20), nullable=False, default="scheduled", index=True)
    price = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)

    cancelled_at = Column(UTCDateTime(timezone=True), nullable=True)
    cancelled_by = Column(String(128), nullable=True)
    completed_at = Column(UTCDateTime(timezone=True), nullable=True)

    created_at = Column(UTCDateTime(timezone=True), default=utcnow)
    updated_at = Column(UTCDateTime(timezone=True), default=utcnow, onupdate=utcnow)

    provider = relationship("Provider", back_populates="appointments")


class LedgerEntry(Base):
    """Append-only money movement for a provider.

    Amounts are stored positive; transaction_type says whether the entry
    credits (earning) or debits (withdrawal) the provider.
    """

    __tablename__ = "ledger_entries"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_ledger_amount"),
        CheckConstraint(_in_list("transaction_type", LEDGER_TYPES), name="ck_ledger_type"),
        CheckConstraint(_in_list("status", LEDGER_STATUSES), name="ck_ledger_status"),
        # At most one entry (the earning) per appointment
        UniqueConstraint("appointment_id", name="uq_ledger_appointment"),
        Index("ix_ledger_provider_type_status", "provider_id", "transaction_type", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)
    transaction_type = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="pending")

    created_at = Column(UTCDateTime(timezone=True), nullable=False, default=utcnow)
    processed_at = Column(UTCDateTime(timezone=True), nullable=True)


IMMUTABLE_LEDGER_FIELDS = ("provider_id", "appointment_id", "amount", "transaction_type", "created_at")


@event.listens_for(LedgerEntry, "before_update")
def reject_ledger_rewrites(mapper, connection, target):
    state = inspect(target)
    changed = [name for name in IMMUTABLE_LEDGER_FIELDS if state.attrs[name].history.has_changes()]
    if changed:
        raise InvalidTransition(
            f"Ledger entry {target.id} is append-only; refusing to change {', '.join(changed)}"
        )


@event.listens_for(LedgerEntry, "before_delete")
def reject_ledger_deletes(mapper, connection, target):
    raise InvalidTransition(f"Ledger entry {target.id} is append-only and cannot be deleted")


@event.listens_for(Application, "before_delete")
def reject_application_deletes(mapper, connection, target):
    raise InvalidTransition(f"Application {target.id} is an audit record and cannot be deleted")


# PostgreSQL enforces non-overlap of live appointments itself; other backends
# rely on the per-provider booking lock.
event.listen(
    Appointment.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    Appointment.__table__,
    "after_create",
    DDL(
        "ALTER TABLE appointments ADD CONSTRAINT ex_appointments_no_overlap "
        "EXCLUDE USING gist (provider_id WITH =, tstzrange(starts_at, ends_at, '[)') WITH &&) "
        "WHERE (status IN ('scheduled', 'completed'))"
    ).execute_if(dialect="postgresql"),
)
OVERLAP_CONSTRAINT_NAME = "ex_appointments_no_overlap"
