"""deliverable audit log + webhook endpoints

Revision ID: 8c4d2f6a9e31
Revises: 5b1e0c7d2a10
Create Date: 2026-10-19 10:47:03.918270

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '8c4d2f6a9e31'
down_revision: Union[str, Sequence[str], None] = '5b1e0c7d2a10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "deliverable_audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("purchase_id", sa.Integer(), sa.ForeignKey("purchases.id", ondelete="CASCADE", name="fk_deliverable_audit_logs_purchase_id_purchases"), nullable=False),
        sa.Column("feature_name", sa.String(length=160), nullable=False),
        sa.Column("deliverable_id", sa.Integer(), sa.ForeignKey("deliverables.id", ondelete="SET NULL", name="fk_deliverable_audit_logs_deliverable_id_deliverables"), nullable=True),
        sa.Column("revision_request_id", sa.Integer(), sa.ForeignKey("revision_requests.id", ondelete="SET NULL", name="fk_deliverable_audit_logs_revision_request_id_revision_requests"), nullable=True),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL", name="fk_deliverable_audit_logs_user_id_users"), nullable=True),
        sa.Column("details", sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index(
        "ix_deliverable_audit_logs_lineage_created",
        "deliverable_audit_logs",
        ["purchase_id", "feature_name", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_deliverable_audit_logs_action",
        "deliverable_audit_logs",
        ["action"],
        unique=False,
    )

    op.create_table(
        "webhook_endpoints",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("url", sa.String(length=512), nullable=False),
        sa.Column("secret", sa.String(length=255), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("event_filter", sa.String(length=512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )


def downgrade():
    op.drop_table("webhook_endpoints")
    op.drop_index("ix_deliverable_audit_logs_action", table_name="deliverable_audit_logs")
    op.drop_index("ix_deliverable_audit_logs_lineage_created", table_name="deliverable_audit_logs")
    op.drop_table("deliverable_audit_logs")
