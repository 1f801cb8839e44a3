"""Application repository - Database operations for therapist applications"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import APPLICATION_STATUSES, Application


class ApplicationRepository:
    """Repository for application database operations"""

    @staticmethod
    def get_by_id(db: Session, application_id: int, for_update: bool = False) -> Optional[Application]:
        """Get an application by ID, optionally row-locking it for the transaction"""
        query = db.query(Application).filter(Application.id == application_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def get_active_for_applicant(
        db: Session, applicant_uid: str, for_update: bool = False
    ) -> Optional[Application]:
        """The applicant's current (non-archived) application, if any"""
        query = db.query(Application).filter(
            Application.applicant_uid == applicant_uid,
            Application.archived_at.is_(None),
        )
        if for_update:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def create(db: Session, applicant_uid: str, **application_data) -> Application:
        """Stage a new application; the caller commits"""
        application = Application(applicant_uid=applicant_uid, **application_data)
        db.add(application)
        db.flush()
        return application

    @staticmethod
    def list_applications(db: Session, status: Optional[str] = None) -> list[Application]:
        """Applications newest first, archived ones included for the audit trail"""
        query = db.query(Application)
        if status and status != "all":
            query = query.filter(Application.status == status)
        return query.order_by(Application.applied_at.desc(), Application.id.desc()).all()

    @staticmethod
    def count_by_status(db: Session) -> dict[str, int]:
        rows = (
            db.query(Application.status, func.count(Application.id))
            .filter(Application.archived_at.is_(None))
            .group_by(Application.status)
            .all()
        )
        counts = {status: 0 for status in APPLICATION_STATUSES}
        counts.update({status: count for status, count in rows})
        return counts
