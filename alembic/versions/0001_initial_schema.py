"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


project_category = sa.Enum(
    "water", "education", "health", "agriculture", "infrastructure", name="projectcategory"
)
milestone_status = sa.Enum("pending", "active", "completed", "verified", name="milestonestatus")
validation_status = sa.Enum("pending", "approved", "rejected", name="validationstatus")
validator_status = sa.Enum("active", "inactive", name="validatorstatus")
payment_method = sa.Enum("mobile_money", "card", "crypto", name="paymentmethod")
donation_status = sa.Enum("pending", "processing", "completed", "failed", "queued", name="donationstatus")
fund_release_status = sa.Enum("pending", "released", "failed", name="fundreleasestatus")


def upgrade() -> None:
    op.create_table(
        "audit_logs",
        *_timestamps(),
        sa.Column("actor", sa.String(length=100), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity", sa.String(length=100), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=False),
        sa.Column("data_json", sa.JSON(), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])

    op.create_table(
        "projects",
        *_timestamps(),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("target_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("current_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("category", project_category, nullable=False),
        sa.Column("region_id", sa.String(length=32), nullable=False),
        sa.Column("ngo_address", sa.String(length=128), nullable=False),
        sa.Column("images", sa.JSON(), nullable=False),
        sa.CheckConstraint("target_amount > 0", name="ck_project_positive_target"),
        sa.CheckConstraint("current_amount >= 0", name="ck_project_current_non_negative"),
    )
    op.create_index("ix_projects_category", "projects", ["category"])
    op.create_index("ix_projects_region", "projects", ["region_id"])

    op.create_table(
        "community_validators",
        *_timestamps(),
        sa.Column("wallet_address", sa.String(length=128), nullable=False, unique=True),
        sa.Column("region_id", sa.String(length=32), nullable=False),
        sa.Column("reputation_score", sa.Numeric(6, 2), nullable=False),
        sa.Column("validation_count", sa.Integer(), nullable=False),
        sa.Column("community_endorsements", sa.Integer(), nullable=False),
        sa.Column("languages", sa.JSON(), nullable=False),
        sa.Column("status", validator_status, nullable=False),
    )

    op.create_table(
        "african_impact_metrics",
        *_timestamps(),
        sa.Column("key", sa.String(length=32), nullable=False, unique=True),
        sa.Column("water_access_improved", sa.Integer(), nullable=False),
        sa.Column("schools_built", sa.Integer(), nullable=False),
        sa.Column("health_clinics_supported", sa.Integer(), nullable=False),
        sa.Column("jobs_created", sa.Integer(), nullable=False),
        sa.Column("communities_reached", sa.Integer(), nullable=False),
        sa.Column("local_currency_impact", sa.JSON(), nullable=False),
        sa.Column("projects_by_category", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
    )

    op.create_table(
        "impact_events",
        *_timestamps(),
        sa.Column("source_key", sa.String(length=191), nullable=False, unique=True),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("increments", sa.JSON(), nullable=False),
    )

    op.create_table(
        "payment_webhook_events",
        *_timestamps(),
        sa.Column("provider", sa.String(length=50), nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reference", sa.String(length=255), nullable=True),
        sa.Column("kind", sa.String(length=64), nullable=False),
        sa.Column("raw_json", sa.JSON(), nullable=False),
        sa.UniqueConstraint("provider", "event_id", name="uq_payment_webhook_events_provider_event_id"),
    )
    op.create_index("ix_payment_webhook_events_received", "payment_webhook_events", ["received_at"])
    op.create_index("ix_payment_webhook_events_kind", "payment_webhook_events", ["kind"])

    op.create_table(
        "milestones",
        *_timestamps(),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("idx", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("target_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("current_amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("status", milestone_status, nullable=False),
        sa.Column("validators_required", sa.Integer(), nullable=False),
        sa.Column("validators_approved", sa.Integer(), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("project_id", "idx", name="uq_milestone_project_idx"),
        sa.CheckConstraint("idx > 0", name="ck_milestone_positive_idx"),
        sa.CheckConstraint("target_amount > 0", name="ck_milestone_positive_target"),
        sa.CheckConstraint("validators_required > 0", name="ck_milestone_validators_required"),
    )
    op.create_index("ix_milestones_project_id", "milestones", ["project_id"])

    op.create_table(
        "milestone_validations",
        *_timestamps(),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("milestone_id", sa.Integer(), sa.ForeignKey("milestones.id"), nullable=False),
        sa.Column("validator_id", sa.Integer(), sa.ForeignKey("community_validators.id"), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("photos", sa.JSON(), nullable=False),
        sa.Column("gps_lat", sa.Float(), nullable=True),
        sa.Column("gps_lng", sa.Float(), nullable=True),
        sa.Column("gps_accuracy", sa.Float(), nullable=True),
        sa.Column("language", sa.String(length=16), nullable=False),
        sa.Column("status", validation_status, nullable=False),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_validation_rating_range"),
    )
    op.create_index("ix_validations_project_milestone", "milestone_validations", ["project_id", "milestone_id"])
    op.create_index("ix_validations_status", "milestone_validations", ["status"])
    op.create_index("ix_milestone_validations_validator_id", "milestone_validations", ["validator_id"])

    op.create_table(
        "donation_transactions",
        *_timestamps(),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("milestone_id", sa.Integer(), sa.ForeignKey("milestones.id"), nullable=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("payment_method", payment_method, nullable=False),
        sa.Column("status", donation_status, nullable=False),
        sa.Column("tx_hash", sa.String(length=255), nullable=True),
        sa.Column("donor_address", sa.String(length=255), nullable=True),
        sa.Column("offline", sa.Boolean(), nullable=False),
        sa.Column("payment_reference", sa.String(length=255), nullable=True, unique=True),
        sa.Column("mobile_money_provider", sa.String(length=50), nullable=True),
        sa.Column("client_reference", sa.String(length=128), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_donation_positive_amount"),
    )
    op.create_index("ix_donation_transactions_project_id", "donation_transactions", ["project_id"])
    op.create_index("ix_donation_transactions_client_reference", "donation_transactions", ["client_reference"])
    op.create_index("ix_donations_project_status", "donation_transactions", ["project_id", "status"])
    op.create_index("ix_donations_created_at", "donation_transactions", ["created_at"])

    op.create_table(
        "fund_releases",
        *_timestamps(),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id"), nullable=False),
        sa.Column("milestone_id", sa.Integer(), sa.ForeignKey("milestones.id"), nullable=False, unique=True),
        sa.Column("amount", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", fund_release_status, nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("external_ref", sa.String(length=128), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_fund_releases_project_id", "fund_releases", ["project_id"])


def downgrade() -> None:
    op.drop_index("ix_fund_releases_project_id", table_name="fund_releases")
    op.drop_table("fund_releases")
    op.drop_index("ix_donations_created_at", table_name="donation_transactions")
    op.drop_index("ix_donations_project_status", table_name="donation_transactions")
    op.drop_index("ix_donation_transactions_client_reference", table_name="donation_transactions")
    op.drop_index("ix_donation_transactions_project_id", table_name="donation_transactions")
    op.drop_table("donation_transactions")
    op.drop_index("ix_milestone_validations_validator_id", table_name="milestone_validations")
    op.drop_index("ix_validations_status", table_name="milestone_validations")
    op.drop_index("ix_validations_project_milestone", table_name="milestone_validations")
    op.drop_table("milestone_validations")
    op.drop_index("ix_milestones_project_id", table_name="milestones")
    op.drop_table("milestones")
    op.drop_index("ix_payment_webhook_events_kind", table_name="payment_webhook_events")
    op.drop_index("ix_payment_webhook_events_received", table_name="payment_webhook_events")
    op.drop_table("payment_webhook_events")
    op.drop_table("impact_events")
    op.drop_table("african_impact_metrics")
    op.drop_table("community_validators")
    op.drop_index("ix_projects_region", table_name="projects")
    op.drop_index("ix_projects_category", table_name="projects")
    op.drop_table("projects")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_table("audit_logs")

    bind = op.get_bind()
    for enum_type in (
        fund_release_status,
        donation_status,
        payment_method,
        validator_status,
        validation_status,
        milestone_status,
        project_category,
    ):
        enum_type.drop(bind, checkfirst=True)
