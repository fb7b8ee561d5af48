"""initial schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "snapshots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_nodes", sa.Integer(), nullable=True),
        sa.Column("online_nodes", sa.Integer(), nullable=True),
        sa.Column("degraded_nodes", sa.Integer(), nullable=True),
        sa.Column("offline_nodes", sa.Integer(), nullable=True),
        sa.Column("total_storage_bytes", sa.BigInteger(), nullable=True),
        sa.Column("used_storage_bytes", sa.BigInteger(), nullable=True),
        sa.Column("avg_uptime", sa.Float(), nullable=True),
        sa.Column("avg_score", sa.Float(), nullable=True),
        sa.Column("total_credits", sa.Float(), nullable=True),
        sa.Column("avg_credits", sa.Float(), nullable=True),
    )
    op.create_index("ix_snapshots_timestamp", "snapshots", ["timestamp"])

    op.create_table(
        "node_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "snapshot_id",
            sa.Integer(),
            sa.ForeignKey("snapshots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("node_id", sa.String(length=128), nullable=False),
        sa.Column("public_key", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("uptime_percent", sa.Float(), nullable=True),
        sa.Column("storage_usage_percent", sa.Float(), nullable=True),
        sa.Column("storage_total_bytes", sa.BigInteger(), nullable=True),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("health_score", sa.Integer(), nullable=True),
        sa.Column("credits", sa.Float(), nullable=True),
        sa.Column("version", sa.String(length=64), nullable=True),
        sa.Column("is_public", sa.Boolean(), nullable=True),
        sa.UniqueConstraint("snapshot_id", "node_id", name="uq_node_snapshots_snapshot_node"),
    )
    op.create_index("ix_node_snapshots_node_id", "node_snapshots", ["node_id"])

    op.create_table(
        "alert_subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("push_endpoint", sa.String(length=1024), nullable=True),
        sa.Column("push_p256dh", sa.String(length=256), nullable=True),
        sa.Column("push_auth", sa.String(length=128), nullable=True),
        sa.Column("node_ids", sa.JSON(), nullable=True),
        sa.Column("alert_offline", sa.Boolean(), nullable=True),
        sa.Column("alert_online", sa.Boolean(), nullable=True),
        sa.Column("alert_degraded", sa.Boolean(), nullable=True),
        sa.Column("alert_score_drop", sa.Boolean(), nullable=True),
        sa.Column("alert_score_rise", sa.Boolean(), nullable=True),
        sa.Column("alert_uptime_drop", sa.Boolean(), nullable=True),
        sa.Column("alert_uptime_rise", sa.Boolean(), nullable=True),
        sa.Column("alert_version_change", sa.Boolean(), nullable=True),
        sa.Column("alert_storage_change", sa.Boolean(), nullable=True),
        sa.Column("alert_public_status_change", sa.Boolean(), nullable=True),
        sa.Column("score_drop_threshold", sa.Float(), nullable=True),
        sa.Column("score_rise_threshold", sa.Float(), nullable=True),
        sa.Column("uptime_drop_threshold", sa.Float(), nullable=True),
        sa.Column("uptime_rise_threshold", sa.Float(), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_alert_subscriptions_email", "alert_subscriptions", ["email"])

    op.create_table(
        "verification_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "subscription_id",
            sa.Integer(),
            sa.ForeignKey("alert_subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("token"),
    )

    op.create_table(
        "alert_history",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "subscription_id",
            sa.Integer(),
            sa.ForeignKey("alert_subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("node_id", sa.String(length=128), nullable=False),
        sa.Column("alert_type", sa.String(length=32), nullable=False),
        sa.Column("channel", sa.String(length=16), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_alert_history_lookup",
        "alert_history",
        ["subscription_id", "node_id", "alert_type", "sent_at"],
    )

    op.create_table(
        "user_alerts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "subscription_id",
            sa.Integer(),
            sa.ForeignKey("alert_subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("node_id", sa.String(length=128), nullable=False),
        sa.Column("alert_type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=128), nullable=False),
        sa.Column("message", sa.String(length=512), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_user_alerts_subscription_id", "user_alerts", ["subscription_id"])
    op.create_index("ix_user_alerts_email", "user_alerts", ["email"])

    op.create_table(
        "job_leases",
        sa.Column("name", sa.String(length=64), primary_key=True),
        sa.Column("holder", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("job_leases")
    op.drop_index("ix_user_alerts_email", table_name="user_alerts")
    op.drop_index("ix_user_alerts_subscription_id", table_name="user_alerts")
    op.drop_table("user_alerts")
    op.drop_index("ix_alert_history_lookup", table_name="alert_history")
    op.drop_table("alert_history")
    op.drop_table("verification_tokens")
    op.drop_index("ix_alert_subscriptions_email", table_name="alert_subscriptions")
    op.drop_table("alert_subscriptions")
    op.drop_index("ix_node_snapshots_node_id", table_name="node_snapshots")
    op.drop_table("node_snapshots")
    op.drop_index("ix_snapshots_timestamp", table_name="snapshots")
    op.drop_table("snapshots")
