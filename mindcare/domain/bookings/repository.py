"""Booking repository - Database operations for appointments"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import BLOCKING_APPOINTMENT_STATUSES, Appointment


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get_by_id(db: Session, appointment_id: int, for_update: bool = False) -> Optional[Appointment]:
        query = db.query(Appointment).filter(Appointment.id == appointment_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def find_conflict(
        db: Session, provider_id: int, starts_at: datetime, ends_at: datetime
    ) -> Optional[Appointment]:
        """First live appointment overlapping the half-open interval [starts_at, ends_at)"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.provider_id == provider_id,
                Appointment.status.in_(BLOCKING_APPOINTMENT_STATUSES),
                Appointment.starts_at < ends_at,
                Appointment.ends_at > starts_at,
            )
            .order_by(Appointment.starts_at)
            .first()
        )

    @staticmethod
    def blocking_between(
        db: Session, provider_id: int, range_start: datetime, range_end: datetime
    ) -> list[Appointment]:
        """Live appointments touching [range_start, range_end), for slot listings"""
        return (
            db.query(Appointment)
            .filter(
                Appointment.provider_id == provider_id,
                Appointment.status.in_(BLOCKING_APPOINTMENT_STATUSES),
                Appointment.starts_at < range_end,
                Appointment.ends_at > range_start,
            )
            .order_by(Appointment.starts_at)
            .all()
        )

    @staticmethod
    def create(db: Session, **appointment_data) -> Appointment:
        """Stage a new appointment; the caller commits"""
        appointment = Appointment(**appointment_data)
        db.add(appointment)
        db.flush()
        return appointment

    @staticmethod
    def list_for_provider(
        db: Session,
        provider_id: int,
        start_from: Optional[datetime] = None,
        start_to: Optional[datetime] = None,
        status: Optional[str] = None,
    ) -> list[Appointment]:
        query = db.query(Appointment).filter(Appointment.provider_id == provider_id)
        if start_from is not None:
            query = query.filter(Appointment.starts_at >= start_from)
        if start_to is not None:
            query = query.filter(Appointment.starts_at < start_to)
        if status:
            query = query.filter(Appointment.status == status)
        return query.order_by(Appointment.starts_at).all()

    @staticmethod
    def list_for_client(db: Session, client_uid: str) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.client_uid == client_uid)
            .order_by(Appointment.starts_at.desc())
            .all()
        )
