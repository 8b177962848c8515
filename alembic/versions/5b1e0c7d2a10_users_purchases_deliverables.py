"""users, purchases, deliverables y revision requests

Revision ID: 5b1e0c7d2a10
Revises:
Create Date: 2026-10-19 10:12:41.530112

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '5b1e0c7d2a10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=160), nullable=False),
        sa.Column("full_name", sa.String(length=160), nullable=True),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="client"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "purchases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_purchases_client_id_users"), nullable=False),
        sa.Column("package_name", sa.String(length=160), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
    )
    op.create_index("ix_purchases_client_id", "purchases", ["client_id"])

    op.create_table(
        "purchase_features",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_id", sa.Integer(), sa.ForeignKey("purchases.id", ondelete="CASCADE", name="fk_purchase_features_purchase_id_purchases"), nullable=False),
        sa.Column("feature_name", sa.String(length=160), nullable=False),
        sa.Column("feature_status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.UniqueConstraint("purchase_id", "feature_name", name="uq_purchase_feature"),
        sa.CheckConstraint(
            "feature_status IN ('pending', 'in_progress', 'completed', 'cancelled')",
            name="ck_purchase_features_feature_status",
        ),
    )
    op.create_index("ix_purchase_features_purchase_id", "purchase_features", ["purchase_id"])

    op.create_table(
        "deliverables",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_id", sa.Integer(), sa.ForeignKey("purchases.id", ondelete="CASCADE", name="fk_deliverables_purchase_id_purchases"), nullable=False),
        sa.Column("feature_name", sa.String(length=160), nullable=False),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("file_path", sa.String(length=1024), nullable=True),
        sa.Column("deliverable_link", sa.String(length=2048), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("uploaded_by", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL", name="fk_deliverables_uploaded_by_users"), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        # un número por lineage, aun con escritores concurrentes
        sa.UniqueConstraint("purchase_id", "feature_name", "version_number", name="uq_deliverable_lineage_version"),
        sa.CheckConstraint("(file_path IS NULL) <> (deliverable_link IS NULL)", name="ck_deliverables_content_xor"),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'revision_requested')",
            name="ck_deliverables_deliverable_status",
        ),
    )
    op.create_index("ix_deliverables_purchase_id", "deliverables", ["purchase_id"])
    op.create_index("ix_deliverables_lineage_status", "deliverables", ["purchase_id", "feature_name", "status"])

    op.create_table(
        "revision_requests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("deliverable_id", sa.Integer(), sa.ForeignKey("deliverables.id", ondelete="CASCADE", name="fk_revision_requests_deliverable_id_deliverables"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE", name="fk_revision_requests_user_id_users"), nullable=False),
        sa.Column("request_reason", sa.Text(), nullable=False),
        sa.Column("admin_response", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="pending"),
        sa.Column("requested_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed')",
            name="ck_revision_requests_revision_status",
        ),
    )
    op.create_index("ix_revision_requests_deliverable_id", "revision_requests", ["deliverable_id"])
    op.create_index("ix_revision_requests_user_id", "revision_requests", ["user_id"])

    # a lo sumo una solicitud pending por versión (índice parcial; PG y SQLite)
    op.create_index(
        "uq_revision_requests_one_pending",
        "revision_requests",
        ["deliverable_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )


def downgrade():
    op.drop_index("uq_revision_requests_one_pending", table_name="revision_requests")
    op.drop_index("ix_revision_requests_user_id", table_name="revision_requests")
    op.drop_index("ix_revision_requests_deliverable_id", table_name="revision_requests")
    op.drop_table("revision_requests")

    op.drop_index("ix_deliverables_lineage_status", table_name="deliverables")
    op.drop_index("ix_deliverables_purchase_id", table_name="deliverables")
    op.drop_table("deliverables")

    op.drop_index("ix_purchase_features_purchase_id", table_name="purchase_features")
    op.drop_table("purchase_features")

    op.drop_index("ix_purchases_client_id", table_name="purchases")
    op.drop_table("purchases")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
