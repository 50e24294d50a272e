"""warish initial schema

Revision ID: 4b7e2a9c1d05
Revises:
Create Date: 2026-10-19 10:30:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "4b7e2a9c1d05"
down_revision = None
branch_labels = None
depends_on = None


APPLICATION_STATUS = sa.Enum(
    "SUBMITTED",
    "ASSIGNED",
    "UNDER_REVIEW",
    "APPROVED",
    "REJECTED",
    "RENEWED",
    "CERTIFICATE_GENERATED",
    name="warish_application_status",
)
DOCUMENT_KIND = sa.Enum("SUPPORTING_PROOF", "CERTIFICATE_OUTPUT", name="warish_document_kind")
LIVING_STATUS = sa.Enum("ALIVE", "DECEASED", name="warish_living_status")
CORRECTION_STATUS = sa.Enum("PENDING", "RESOLVED", name="warish_correction_status")
CORRECTION_OUTCOME = sa.Enum("APPLIED", "DECLINED", "NOTED", name="warish_correction_outcome")


def upgrade():
    op.create_table(
        "staff_account",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("staff_code", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=30), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("staff_code"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "warish_application",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("acknowledgment_code", sa.String(length=40), nullable=False),
        sa.Column("applicant_name", sa.String(length=120), nullable=False),
        sa.Column("applicant_mobile", sa.String(length=20), nullable=True),
        sa.Column("relation_with_deceased", sa.String(length=60), nullable=False),
        sa.Column("deceased_name", sa.String(length=120), nullable=False),
        sa.Column("date_of_death", sa.Date(), nullable=False),
        sa.Column("reporting_date", sa.Date(), nullable=False),
        sa.Column("father_name", sa.String(length=120), nullable=True),
        sa.Column("spouse_name", sa.String(length=120), nullable=True),
        sa.Column("village_name", sa.String(length=120), nullable=True),
        sa.Column("post_office", sa.String(length=120), nullable=True),
        sa.Column("status", APPLICATION_STATUS, nullable=False),
        sa.Column("assigned_staff_id", sa.String(length=64), nullable=True),
        sa.Column("submitted_by", sa.String(length=64), nullable=True),
        sa.Column("memo_number", sa.String(length=40), nullable=True),
        sa.Column("memo_date", sa.Date(), nullable=True),
        sa.Column("approval_year", sa.String(length=4), nullable=True),
        sa.Column("renew_date", sa.Date(), nullable=True),
        sa.Column("remarks", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("acknowledgment_code", name="uq_warish_application_ack"),
        sa.UniqueConstraint("memo_number", name="uq_warish_application_memo"),
    )
    op.create_index(
        "ix_warish_application_acknowledgment_code",
        "warish_application",
        ["acknowledgment_code"],
        unique=False,
    )
    op.create_index(
        "ix_warish_application_status_created",
        "warish_application",
        ["status", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_warish_application_staff_status",
        "warish_application",
        ["assigned_staff_id", "status"],
        unique=False,
    )

    op.create_table(
        "warish_document",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("kind", DOCUMENT_KIND, nullable=False),
        sa.Column("doc_type", sa.String(length=50), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("storage_url", sa.String(length=500), nullable=False),
        sa.Column("storage_id", sa.String(length=255), nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=False),
        sa.Column("remarks", sa.String(length=500), nullable=False),
        sa.Column("verified_at", sa.DateTime(), nullable=True),
        sa.Column("verified_by", sa.String(length=64), nullable=True),
        sa.Column("uploaded_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["warish_application.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_warish_document_application_id", "warish_document", ["application_id"], unique=False)
    op.create_index(
        "ix_warish_document_application_kind",
        "warish_document",
        ["application_id", "kind"],
        unique=False,
    )
    # At most one generated certificate per application.
    op.create_index(
        "ux_warish_document_certificate_output",
        "warish_document",
        ["application_id"],
        unique=True,
        sqlite_where=sa.text("kind = 'CERTIFICATE_OUTPUT'"),
        postgresql_where=sa.text("kind = 'CERTIFICATE_OUTPUT'"),
    )

    op.create_table(
        "warish_family_member",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("relation", sa.String(length=60), nullable=False),
        sa.Column("living_status", LIVING_STATUS, nullable=False),
        sa.Column("gender", sa.String(length=20), nullable=True),
        sa.Column("spouse_name", sa.String(length=120), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["application_id"], ["warish_application.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_id"], ["warish_family_member.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_warish_family_member_application_id",
        "warish_family_member",
        ["application_id"],
        unique=False,
    )
    op.create_index(
        "ix_warish_family_member_application_parent",
        "warish_family_member",
        ["application_id", "parent_id"],
        unique=False,
    )

    op.create_table(
        "warish_correction_request",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("application_id", sa.Integer(), nullable=False),
        sa.Column("family_member_id", sa.Integer(), nullable=True),
        sa.Column("description", sa.String(length=1000), nullable=False),
        sa.Column("field_name", sa.String(length=60), nullable=True),
        sa.Column("current_value", sa.String(length=255), nullable=True),
        sa.Column("proposed_value", sa.String(length=255), nullable=True),
        sa.Column("status", CORRECTION_STATUS, nullable=False),
        sa.Column("outcome", CORRECTION_OUTCOME, nullable=True),
        sa.Column("resolution", sa.String(length=1000), nullable=True),
        sa.Column("requested_by", sa.String(length=64), nullable=False),
        sa.Column("resolved_by", sa.String(length=64), nullable=True),
        sa.Column("requested_at", sa.DateTime(), nullable=False),
        sa.Column("resolved_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["application_id"], ["warish_application.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["family_member_id"], ["warish_family_member.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_warish_correction_request_application_id",
        "warish_correction_request",
        ["application_id"],
        unique=False,
    )
    op.create_index(
        "ix_warish_correction_application_status",
        "warish_correction_request",
        ["application_id", "status"],
        unique=False,
    )


def downgrade():
    op.drop_index("ix_warish_correction_application_status", table_name="warish_correction_request")
    op.drop_index("ix_warish_correction_request_application_id", table_name="warish_correction_request")
    op.drop_table("warish_correction_request")
    op.drop_index("ix_warish_family_member_application_parent", table_name="warish_family_member")
    op.drop_index("ix_warish_family_member_application_id", table_name="warish_family_member")
    op.drop_table("warish_family_member")
    op.drop_index("ux_warish_document_certificate_output", table_name="warish_document")
    op.drop_index("ix_warish_document_application_kind", table_name="warish_document")
    op.drop_index("ix_warish_document_application_id", table_name="warish_document")
    op.drop_table("warish_document")
    op.drop_index("ix_warish_application_staff_status", table_name="warish_application")
    op.drop_index("ix_warish_application_status_created", table_name="warish_application")
    op.drop_index("ix_warish_application_acknowledgment_code", table_name="warish_application")
    op.drop_table("warish_application")
    op.drop_table("staff_account")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for enum in (CORRECTION_OUTCOME, CORRECTION_STATUS, LIVING_STATUS, DOCUMENT_KIND, APPLICATION_STATUS):
            enum.drop(bind, checkfirst=True)
