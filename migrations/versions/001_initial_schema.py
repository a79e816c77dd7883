"""Create job broker schema.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    "actorrole": ("client", "provider", "operator"),
    "truststatus": ("good", "normal", "risk", "critical"),
    "jobstatus": (
        "pending", "soft_locked", "negotiation_pending", "waiting_for_payment",
        "assigned", "in_progress", "completion_pending_approval", "completed", "cancelled",
    ),
    "bidstatus": ("pending", "countered", "accepted", "rejected"),
    "bidparty": ("provider", "client"),
    "paymentstatus": ("escrow_hold", "released", "hold_forfeited"),
    "paymentmethod": ("online", "cash", "bank_transfer", "other"),
    "holdstatus": ("locked", "frozen", "released", "forfeited"),
    "accounttype": (
        "platform_commission", "provider_payable", "warranty_hold", "client_receivable",
    ),
    "entrytype": ("credit", "debit"),
    "entrycategory": (
        "commission", "job_payment", "warranty_hold", "warranty_release", "warranty_forfeit",
    ),
    "disputetype": ("quality", "incomplete_work", "payment", "damage", "other"),
    "disputeseverity": ("low", "medium", "high"),
    "disputestatus": ("open", "under_review", "resolved"),
    "disputeoutcome": ("provider_favoured", "client_favoured", "settled"),
    "trustchangetype": (
        "rating_impact", "dispute_resolution", "repost_penalty", "system_recalculation",
    ),
    "notificationstatus": ("pending", "sent", "failed"),
}


def _enum(name: str) -> postgresql.ENUM:
    # Types are created up front; several tables share actorrole
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _ts(name: str, nullable: bool = True, server_now: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.func.now() if server_now else None,
    )


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "actor_profiles",
        sa.Column("actor_id", sa.Uuid(), primary_key=True),
        sa.Column("role", _enum("actorrole"), nullable=False),
        sa.Column("display_name", sa.String(128), nullable=True),
        sa.Column("region", sa.String(64), nullable=True),
        sa.Column("trust_score", sa.Numeric(5, 2), nullable=False, server_default="50.00"),
        sa.Column("trust_status", _enum("truststatus"), nullable=False, server_default="risk"),
        sa.Column("penalty_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejected_jobs_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_suspended", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("last_trust_update"),
        _ts("created_at", nullable=False, server_now=True),
    )

    op.create_table(
        "jobs",
        sa.Column("job_id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category_id", sa.String(64), nullable=True),
        sa.Column("region", sa.String(64), nullable=True),
        sa.Column("status", _enum("jobstatus"), nullable=False, server_default="pending"),
        sa.Column("client_id", sa.Uuid(), nullable=False),
        sa.Column("assigned_provider_id", sa.Uuid(), nullable=True),
        sa.Column("estimated_cost", sa.Numeric(12, 2), nullable=False),
        sa.Column("final_price", sa.Numeric(12, 2), nullable=True),
        sa.Column("price_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("negotiation_rounds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_negotiation_rounds", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("repost_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_reposts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("recirculation_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejection_count", sa.Integer(), nullable=False, server_default="0"),
        _ts("last_rejected_at"),
        sa.Column("locked_by_provider_id", sa.Uuid(), nullable=True),
        _ts("lock_expires_at"),
        _ts("negotiation_deadline"),
        _ts("payment_deadline"),
        sa.Column("warranty_days", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("timeout_reasons", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("rejection_reason", sa.String(256), nullable=True),
        _ts("cancelled_at"),
        _ts("started_at"),
        _ts("completed_at"),
        _ts("approved_at"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _ts("created_at", nullable=False, server_now=True),
        _ts("updated_at", nullable=False, server_now=True),
    )
    op.create_index("ix_jobs_client_id", "jobs", ["client_id"])
    op.create_index("ix_jobs_assigned_provider_id", "jobs", ["assigned_provider_id"])
    op.create_index("ix_jobs_status", "jobs", ["status"])

    op.create_table(
        "bids",
        sa.Column("bid_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("proposed_by", _enum("bidparty"), nullable=False),
        sa.Column("offered_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("status", _enum("bidstatus"), nullable=False, server_default="pending"),
        sa.Column("is_counter_offer", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "previous_bid_id", sa.Uuid(),
            sa.ForeignKey("bids.bid_id", ondelete="RESTRICT"), nullable=True,
        ),
        sa.Column("round_number", sa.Integer(), nullable=False, server_default="1"),
        _ts("created_at", nullable=False, server_now=True),
        _ts("updated_at", nullable=False, server_now=True),
    )
    op.create_index("ix_bids_job_id", "bids", ["job_id"])
    op.create_index("ix_bids_provider_id", "bids", ["provider_id"])

    op.create_table(
        "payments",
        sa.Column("payment_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "job_id", sa.Uuid(),
            sa.ForeignKey("jobs.job_id", ondelete="RESTRICT"), unique=True, nullable=False,
        ),
        sa.Column("client_id", sa.Uuid(), nullable=False),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_rate", sa.Numeric(6, 4), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("hold_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("immediate_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("warranty_hold_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", _enum("paymentstatus"), nullable=False, server_default="escrow_hold"),
        sa.Column("payment_method", _enum("paymentmethod"), nullable=False, server_default="online"),
        sa.Column("requires_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("external_reference", sa.String(128), nullable=True),
        sa.Column("created_by", sa.Uuid(), nullable=False),
        _ts("created_at", nullable=False, server_now=True),
        _ts("released_at"),
    )

    op.create_table(
        "warranty_holds",
        sa.Column("hold_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "job_id", sa.Uuid(),
            sa.ForeignKey("jobs.job_id", ondelete="RESTRICT"), unique=True, nullable=False,
        ),
        sa.Column(
            "payment_id", sa.Uuid(),
            sa.ForeignKey("payments.payment_id", ondelete="RESTRICT"), nullable=False,
        ),
        sa.Column("provider_id", sa.Uuid(), nullable=False),
        sa.Column("hold_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("hold_percentage", sa.Numeric(5, 2), nullable=False),
        sa.Column("warranty_days", sa.Integer(), nullable=False),
        _ts("start_date", nullable=False, server_now=True),
        _ts("end_date", nullable=False),
        _ts("effective_end_date", nullable=False),
        sa.Column("paused_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", _enum("holdstatus"), nullable=False, server_default="locked"),
        sa.Column("is_frozen", sa.Boolean(), nullable=False, server_default=sa.false()),
        _ts("frozen_at"),
        sa.Column("freeze_reason", sa.String(512), nullable=True),
        sa.Column("frozen_by", sa.Uuid(), nullable=True),
        _ts("released_at"),
        sa.Column("release_reason", sa.String(512), nullable=True),
        sa.Column("released_by", sa.Uuid(), nullable=True),
        _ts("forfeited_at"),
        sa.Column("forfeit_reason", sa.String(512), nullable=True),
        sa.Column("forfeited_by", sa.Uuid(), nullable=True),
    )
    op.create_index("ix_warranty_holds_provider_id", "warranty_holds", ["provider_id"])
    op.create_index(
        "ix_warranty_holds_status_effective_end", "warranty_holds", ["status", "effective_end_date"]
    )

    op.create_table(
        "ledger_entries",
        sa.Column("entry_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("account_type", _enum("accounttype"), nullable=False),
        sa.Column("entry_type", _enum("entrytype"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("category", _enum("entrycategory"), nullable=False),
        sa.Column("description", sa.String(256), nullable=False),
        sa.Column(
            "payment_id", sa.Uuid(),
            sa.ForeignKey("payments.payment_id", ondelete="RESTRICT"), nullable=True,
        ),
        sa.Column(
            "hold_id", sa.Uuid(),
            sa.ForeignKey("warranty_holds.hold_id", ondelete="RESTRICT"), nullable=True,
        ),
        sa.Column("created_by", sa.Uuid(), nullable=True),
        _ts("created_at", nullable=False, server_now=True),
        sa.CheckConstraint("amount > 0", name="ck_ledger_amount_positive"),
    )
    op.create_index("ix_ledger_entries_job_id", "ledger_entries", ["job_id"])

    op.create_table(
        "disputes",
        sa.Column("dispute_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("raised_by", sa.Uuid(), nullable=False),
        sa.Column("raised_by_role", _enum("actorrole"), nullable=False),
        sa.Column("dispute_type", _enum("disputetype"), nullable=False),
        sa.Column("severity", _enum("disputeseverity"), nullable=False, server_default="medium"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("evidence", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("status", _enum("disputestatus"), nullable=False, server_default="open"),
        sa.Column("outcome", _enum("disputeoutcome"), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.Uuid(), nullable=True),
        sa.Column("resolved_by", sa.Uuid(), nullable=True),
        _ts("resolved_at"),
        _ts("created_at", nullable=False, server_now=True),
    )
    op.create_index("ix_disputes_job_id", "disputes", ["job_id"])

    op.create_table(
        "ratings",
        sa.Column("rating_id", sa.Uuid(), primary_key=True),
        sa.Column("job_id", sa.Uuid(), sa.ForeignKey("jobs.job_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("rater_id", sa.Uuid(), nullable=False),
        sa.Column("ratee_id", sa.Uuid(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        _ts("created_at", nullable=False, server_now=True),
        sa.UniqueConstraint("job_id", "rater_id", name="uq_rating_job_rater"),
        sa.CheckConstraint("score >= 1 AND score <= 5", name="ck_rating_score_range"),
    )
    op.create_index("ix_ratings_ratee_id", "ratings", ["ratee_id"])

    op.create_table(
        "trust_score_events",
        sa.Column("event_id", sa.Uuid(), primary_key=True),
        sa.Column("actor_id", sa.Uuid(), nullable=False),
        sa.Column("old_score", sa.Numeric(5, 2), nullable=False),
        sa.Column("new_score", sa.Numeric(5, 2), nullable=False),
        sa.Column("change_type", _enum("trustchangetype"), nullable=False),
        sa.Column("reason", sa.String(256), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        _ts("created_at", nullable=False, server_now=True),
    )
    op.create_index("ix_trust_score_events_actor_id", "trust_score_events", ["actor_id"])

    op.create_table(
        "notifications",
        sa.Column("notification_id", sa.Uuid(), primary_key=True),
        sa.Column("actor_id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("notification_type", sa.String(64), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("channels", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("metadata", postgresql.JSONB(), nullable=True),
        sa.Column("status", _enum("notificationstatus"), nullable=False, server_default="pending"),
        _ts("created_at", nullable=False, server_now=True),
    )
    op.create_index("ix_notifications_actor_id", "notifications", ["actor_id"])


def downgrade() -> None:
    for table in (
        "notifications", "trust_score_events", "ratings", "disputes", "ledger_entries",
        "warranty_holds", "payments", "bids", "jobs", "actor_profiles",
    ):
        op.drop_table(table)
    for name in reversed(list(ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
