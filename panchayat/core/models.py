from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from flask_login import UserMixin
from sqlalchemy import Enum as SAEnum, ForeignKey, Index, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates
from werkzeug.security import generate_password_hash

from panchayat.core.extensions import db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApplicationStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    ASSIGNED = "ASSIGNED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RENEWED = "RENEWED"
    CERTIFICATE_GENERATED = "CERTIFICATE_GENERATED"


class DocumentKind(str, Enum):
    SUPPORTING_PROOF = "SUPPORTING_PROOF"
    CERTIFICATE_OUTPUT = "CERTIFICATE_OUTPUT"


class LivingStatus(str, Enum):
    ALIVE = "ALIVE"
    DECEASED = "DECEASED"


class CorrectionStatus(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"


class CorrectionOutcome(str, Enum):
    APPLIED = "APPLIED"
    DECLINED = "DECLINED"
    NOTED = "NOTED"


# Supporting document types accepted on upload, with their allowed mime types.
SUPPORTED_DOCUMENT_TYPES: dict[str, tuple[str, ...]] = {
    "death_certificate": ("application/pdf", "image/jpeg", "image/png"),
    "application_form": ("application/pdf",),
    "affidavit": ("application/pdf",),
    "heir_proof": ("application/pdf",),
}
CERTIFICATE_DOCUMENT_TYPE = "warish_certificate"


class StaffUser(UserMixin, db.Model):
    __tablename__ = "staff_account"

    id: Mapped[int] = mapped_column(primary_key=True)
    staff_code: Mapped[str] = mapped_column(db.String(64), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(db.String(255), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    password_hash: Mapped[str] = mapped_column(db.String(255), nullable=False)
    role: Mapped[str] = mapped_column(db.String(30), nullable=False, default="staff")
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)


class WarishApplication(db.Model):
    __tablename__ = "warish_application"
    __table_args__ = (
        UniqueConstraint("acknowledgment_code", name="uq_warish_application_ack"),
        UniqueConstraint("memo_number", name="uq_warish_application_memo"),
        Index("ix_warish_application_status_created", "status", "created_at"),
        Index("ix_warish_application_staff_status", "assigned_staff_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    acknowledgment_code: Mapped[str] = mapped_column(db.String(40), nullable=False, index=True)
    applicant_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    applicant_mobile: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    relation_with_deceased: Mapped[str] = mapped_column(db.String(60), nullable=False, default="")
    deceased_name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    date_of_death: Mapped[date] = mapped_column(nullable=False)
    reporting_date: Mapped[date] = mapped_column(nullable=False)
    father_name: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    spouse_name: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    village_name: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    post_office: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    status: Mapped[ApplicationStatus] = mapped_column(
        SAEnum(ApplicationStatus, name="warish_application_status"),
        nullable=False,
        default=ApplicationStatus.SUBMITTED,
    )
    assigned_staff_id: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    submitted_by: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    memo_number: Mapped[str | None] = mapped_column(db.String(40), nullable=True)
    memo_date: Mapped[date | None] = mapped_column(nullable=True)
    approval_year: Mapped[str | None] = mapped_column(db.String(4), nullable=True)
    renew_date: Mapped[date | None] = mapped_column(nullable=True)
    remarks: Mapped[str] = mapped_column(db.Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    version_id: Mapped[int] = mapped_column(nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    documents = relationship(
        "WarishDocument",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="WarishDocument.id",
    )
    family_members = relationship(
        "FamilyMember",
        back_populates="application",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="FamilyMember.id",
    )
    correction_requests = relationship(
        "CorrectionRequest",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="CorrectionRequest.id",
    )

    @validates("date_of_death", "reporting_date")
    def validate_reporting_after_death(self, key, value):
        date_of_death = value if key == "date_of_death" else self.date_of_death
        reporting_date = value if key == "reporting_date" else self.reporting_date
        if date_of_death and reporting_date and reporting_date < date_of_death:
            raise ValueError("Reporting date cannot precede the date of death")
        return value


class WarishDocument(db.Model):
    __tablename__ = "warish_document"
    __table_args__ = (
        Index("ix_warish_document_application_kind", "application_id", "kind"),
        Index(
            "ux_warish_document_certificate_output",
            "application_id",
            unique=True,
            sqlite_where=text("kind = 'CERTIFICATE_OUTPUT'"),
            postgresql_where=text("kind = 'CERTIFICATE_OUTPUT'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    application_id: Mapped[int] = mapped_column(
        ForeignKey("warish_application.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[DocumentKind] = mapped_column(
        SAEnum(DocumentKind, name="warish_document_kind"),
        nullable=False,
        default=DocumentKind.SUPPORTING_PROOF,
    )
    doc_type: Mapped[str] = mapped_column(db.String(50), nullable=False)
    mime_type: Mapped[str] = mapped_column(db.String(100), nullable=False, default="application/octet-stream")
    filename: Mapped[str] = mapped_column(db.String(255), nullable=False, default="")
    storage_url: Mapped[str] = mapped_column(db.String(500), nullable=False)
    storage_id: Mapped[str] = mapped_column(db.String(255), nullable=False)
    verified: Mapped[bool] = mapped_column(nullable=False, default=False)
    remarks: Mapped[str] = mapped_column(db.String(500), nullable=False, default="")
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    verified_by: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    uploaded_by: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    application = relationship("WarishApplication", back_populates="documents")


class FamilyMember(db.Model):
    __tablename__ = "warish_family_member"
    __table_args__ = (
        Index("ix_warish_family_member_application_parent", "application_id", "parent_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    application_id: Mapped[int] = mapped_column(
        ForeignKey("warish_application.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("warish_family_member.id", ondelete="CASCADE"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(db.String(120), nullable=False)
    relation: Mapped[str] = mapped_column(db.String(60), nullable=False)
    living_status: Mapped[LivingStatus] = mapped_column(
        SAEnum(LivingStatus, name="warish_living_status"),
        nullable=False,
        default=LivingStatus.ALIVE,
    )
    gender: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    spouse_name: Mapped[str | None] = mapped_column(db.String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)

    application = relationship("WarishApplication", back_populates="family_members")


class CorrectionRequest(db.Model):
    __tablename__ = "warish_correction_request"
    __table_args__ = (
        Index("ix_warish_correction_application_status", "application_id", "status"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    application_id: Mapped[int] = mapped_column(
        ForeignKey("warish_application.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    family_member_id: Mapped[int | None] = mapped_column(
        ForeignKey("warish_family_member.id", ondelete="CASCADE"),
        nullable=True,
    )
    description: Mapped[str] = mapped_column(db.String(1000), nullable=False)
    field_name: Mapped[str | None] = mapped_column(db.String(60), nullable=True)
    current_value: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    proposed_value: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    status: Mapped[CorrectionStatus] = mapped_column(
        SAEnum(CorrectionStatus, name="warish_correction_status"),
        nullable=False,
        default=CorrectionStatus.PENDING,
    )
    outcome: Mapped[CorrectionOutcome | None] = mapped_column(
        SAEnum(CorrectionOutcome, name="warish_correction_outcome"),
        nullable=True,
    )
    resolution: Mapped[str | None] = mapped_column(db.String(1000), nullable=True)
    requested_by: Mapped[str] = mapped_column(db.String(64), nullable=False)
    resolved_by: Mapped[str | None] = mapped_column(db.String(64), nullable=True)
    requested_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    application = relationship("WarishApplication", back_populates="correction_requests")
    family_member = relationship("FamilyMember")


def seed_demo_data(session) -> None:
    admin = StaffUser(
        staff_code="admin-1",
        email="admin@panchayat.local",
        full_name="Block Administrator",
        password_hash=generate_password_hash("admin123"),
        role="admin",
    )
    staff = StaffUser(
        staff_code="staff-1",
        email="staff@panchayat.local",
        full_name="Field Staff",
        password_hash=generate_password_hash("staff123"),
        role="staff",
    )
    second_staff = StaffUser(
        staff_code="staff-2",
        email="staff2@panchayat.local",
        full_name="Second Field Staff",
        password_hash=generate_password_hash("staff123"),
        role="staff",
    )
    session.add_all([admin, staff, second_staff])
    session.flush()

    submitted = WarishApplication(
        acknowledgment_code=f"ACK/LH/{utcnow().year}/0001",
        applicant_name="Rina Das",
        applicant_mobile="9000000001",
        relation_with_deceased="Daughter",
        deceased_name="Haren Das",
        date_of_death=date(2025, 11, 2),
        reporting_date=date(2025, 12, 1),
        village_name="Kashipur",
        post_office="Kashipur",
        status=ApplicationStatus.SUBMITTED,
    )
    session.add(submitted)
    session.flush()

    root = FamilyMember(
        application_id=submitted.id,
        name="Maya Das",
        relation="Wife",
        living_status=LivingStatus.ALIVE,
        gender="female",
    )
    son = FamilyMember(
        application_id=submitted.id,
        name="Amit Das",
        relation="Son",
        living_status=LivingStatus.DECEASED,
        gender="male",
    )
    session.add_all([root, son])
    session.flush()
    session.add(
        FamilyMember(
            application_id=submitted.id,
            parent_id=son.id,
            name="Tina Das",
            relation="Grand Daughter",
            living_status=LivingStatus.ALIVE,
            gender="female",
        )
    )
    session.commit()
