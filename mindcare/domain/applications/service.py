"""Application service - Practitioner application review and provider provisioning"""

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...auth import Identity
from ...cache import invalidate_directory
from ...config import (
    DEFAULT_SESSION_PRICE,
    DEFAULT_TIMEZONE,
    FAST_TRACK_ENABLED,
    FAST_TRACK_REVIEWER,
    FAST_TRACK_SPECIALIZATIONS,
)
from ...errors import (
    AlreadyProvisioned,
    DuplicateApplication,
    InvalidTransition,
    NotFound,
)
from ...models import Application, utcnow
from ...utils.retry import retry_on_transient
from ...utils.sanitization import sanitize_list, sanitize_string
from ..providers.repository import ProviderRepository
from .repository import ApplicationRepository
from .schemas import ApplicationCreate, ApplicationUpdate, ReviewDecision

logger = logging.getLogger(__name__)


class ApplicationService:
    """Service layer for the application state machine

    pending →(approve)→ approved, pending →(reject)→ rejected. Approval
    provisions the Provider in the same transaction.
    """

    def __init__(self, db: Session, clock=utcnow, fast_track: Optional[set[str]] = None):
        self.db = db
        self.clock = clock
        self.repo = ApplicationRepository()
        self.providers = ProviderRepository()
        if fast_track is None:
            fast_track = FAST_TRACK_SPECIALIZATIONS if FAST_TRACK_ENABLED else set()
        self.fast_track = {s.lower() for s in fast_track}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_application(self, application_id: int, actor: Identity) -> Application:
        application = self.repo.get_by_id(self.db, application_id)
        if not application:
            raise NotFound("Application not found")
        if not actor.is_admin and application.applicant_uid != actor.uid:
            # Don't reveal other applicants' records
            raise NotFound("Application not found")
        return application

    def get_current_for_applicant(self, applicant_uid: str) -> Application:
        application = self.repo.get_active_for_applicant(self.db, applicant_uid)
        if not application:
            raise NotFound("You have not submitted an application")
        return application

    def list_applications(self, status: Optional[str] = None) -> list[Application]:
        return self.repo.list_applications(self.db, status)

    def stats(self) -> dict[str, int]:
        return self.repo.count_by_status(self.db)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    @retry_on_transient
    def submit(self, applicant_uid: str, data: ApplicationCreate) -> Application:
        """Create a pending application (auto-approved for fast-track specializations)"""
        logger.info(f"📥 Application submitted by {applicant_uid}")

        if self.providers.get_by_applicant(self.db, applicant_uid):
            raise AlreadyProvisioned("This account already has a provider profile")

        current = self.repo.get_active_for_applicant(self.db, applicant_uid, for_update=True)
        if current and current.status == "pending":
            raise DuplicateApplication("You already have an application under review")
        if current:
            # Terminal application superseded by a new submission; kept for audit
            current.archived_at = self.clock()
            self.db.flush()
            logger.info(f"📦 Archived {current.status} application {current.id} for {applicant_uid}")

        application = self.repo.create(
            self.db,
            applicant_uid,
            full_name=sanitize_string(data.full_name),
            email=data.email,
            phone=data.phone,
            specialization=sanitize_string(data.specialization),
            license_number=sanitize_string(data.license_number),
            years_experience=data.years_experience,
            education=sanitize_string(data.education),
            bio=sanitize_string(data.bio),
            certifications=sanitize_list(data.certifications),
            languages=sanitize_list(data.languages),
            license_document_url=data.license_document_url,
            cv_document_url=data.cv_document_url,
            certificate_urls=list(data.certificate_urls),
            status="pending",
            applied_at=self.clock(),
        )

        fast_tracked = data.specialization.strip().lower() in self.fast_track
        if fast_tracked:
            self._apply_review(application, FAST_TRACK_REVIEWER, ReviewDecision.APPROVE, "Fast-track approval")

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Concurrent submission rejected for {applicant_uid}: {e.orig}")
            raise DuplicateApplication("You already have an application under review") from e

        self.db.refresh(application)
        if fast_tracked:
            invalidate_directory()
            logger.info(f"⚡ Application {application.id} fast-tracked to provider {application.provider_id}")
        return application

    @retry_on_transient
    def amend(self, application_id: int, applicant_uid: str, data: ApplicationUpdate) -> Application:
        """Applicant edits their own application while it is still pending"""
        application = self.repo.get_by_id(self.db, application_id, for_update=True)
        if not application or application.applicant_uid != applicant_uid:
            raise NotFound("Application not found")
        if application.status != "pending":
            raise InvalidTransition(f"Application is {application.status} and can no longer be edited")

        text_fields = ("full_name", "specialization", "license_number", "education", "bio")
        for field in text_fields:
            value = getattr(data, field)
            if value is not None:
                setattr(application, field, sanitize_string(value))
        if data.email is not None:
            application.email = data.email
        if data.phone is not None:
            application.phone = data.phone
        if data.years_experience is not None:
            application.years_experience = data.years_experience
        if data.certifications is not None:
            application.certifications = sanitize_list(data.certifications)
        if data.languages is not None:
            application.languages = sanitize_list(data.languages)
        if data.license_document_url is not None:
            application.license_document_url = data.license_document_url
        if data.cv_document_url is not None:
            application.cv_document_url = data.cv_document_url
        if data.certificate_urls is not None:
            application.certificate_urls = list(data.certificate_urls)

        self.db.commit()
        self.db.refresh(application)
        return application

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    @retry_on_transient
    def review(
        self,
        application_id: int,
        reviewer_uid: str,
        decision: ReviewDecision,
        note: Optional[str] = None,
    ) -> Application:
        """Approve or reject a pending application.

        Approval and provider creation commit together; a reviewer never sees an
        approved application without its provider.
        """
        application = self.repo.get_by_id(self.db, application_id, for_update=True)
        if not application:
            raise NotFound("Application not found")

        self._apply_review(application, reviewer_uid, ReviewDecision(decision), note)

        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            raise AlreadyProvisioned("A provider profile already exists for this applicant") from e

        self.db.refresh(application)
        if application.status == "approved":
            invalidate_directory()
        logger.info(f"✅ Application {application.id} {application.status} by {reviewer_uid}")
        return application

    def _apply_review(
        self,
        application: Application,
        reviewer_uid: str,
        decision: ReviewDecision,
        note: Optional[str],
    ) -> None:
        if application.status != "pending":
            raise InvalidTransition(
                f"Application {application.id} is already {application.status}; only pending applications can be reviewed"
            )

        now = self.clock()
        application.reviewed_by = reviewer_uid
        application.reviewed_at = now
        application.admin_notes = sanitize_string(note) if note else None

        if decision == ReviewDecision.REJECT:
            application.status = "rejected"
            self.db.flush()
            return

        if self.providers.get_by_applicant(self.db, application.applicant_uid):
            raise AlreadyProvisioned("A provider profile already exists for this applicant")

        application.status = "approved"
        provider = self.providers.create(
            self.db,
            applicant_uid=application.applicant_uid,
            application_id=application.id,
            display_name=application.full_name,
            specialization=application.specialization,
            bio=application.bio,
            languages=list(application.languages or []),
            session_price=DEFAULT_SESSION_PRICE,
            timezone=DEFAULT_TIMEZONE,
            is_verified=True,
            created_at=now,
        )
        application.provider_id = provider.id
        self.db.flush()
        logger.info(f"👩‍⚕️ Provisioned provider {provider.id} for applicant {application.applicant_uid}")
