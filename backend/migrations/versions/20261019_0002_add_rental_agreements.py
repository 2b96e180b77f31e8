"""add rental_agreements and rental_events

Revision ID: 20261019_0002
Revises: 20261019_0001
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def _bool_col(name: str) -> sa.Column:
    return sa.Column(name, sa.Boolean(), server_default=sa.text("0"), nullable=False)


def upgrade():
    bind = op.get_bind()
    insp = inspect(bind)
    tables = set(insp.get_table_names())

    if "rental_agreements" not in tables:
        op.create_table(
            "rental_agreements",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("chat_id", sa.Integer(), nullable=False),
            sa.Column("listing_id", sa.Integer(), nullable=False),
            sa.Column("return_date", sa.DateTime(), nullable=False),
            _bool_col("buyer_agreed_date"),
            _bool_col("seller_agreed_date"),
            sa.Column("handover_otp", sa.String(length=4), nullable=False),
            sa.Column("return_otp", sa.String(length=4), nullable=False),
            _bool_col("handover_otp_verified"),
            _bool_col("return_otp_verified"),
            _bool_col("buyer_started"),
            _bool_col("seller_started"),
            _bool_col("buyer_confirmed"),
            _bool_col("seller_confirmed"),
            _bool_col("is_late"),
            sa.Column("penalty", sa.Integer(), server_default=sa.text("0"), nullable=False),
            sa.Column("late_observed_at", sa.DateTime(), nullable=True),
            sa.Column("status", sa.String(length=20), server_default="pending", nullable=False),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.Column("start_date", sa.DateTime(), nullable=True),
            sa.Column("completed_at", sa.DateTime(), nullable=True),
            sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
            sa.ForeignKeyConstraint(["chat_id"], ["chats.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["listing_id"], ["listings.id"], ondelete="CASCADE"),
        )
        op.create_index("ix_rental_agreements_chat_id", "rental_agreements", ["chat_id"], unique=False)
        op.create_index("ix_rental_agreements_listing_id", "rental_agreements", ["listing_id"], unique=False)
        op.create_index("ix_rental_agreements_created_at", "rental_agreements", ["created_at"], unique=False)

    if "rental_events" not in tables:
        op.create_table(
            "rental_events",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("agreement_id", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(length=40), nullable=False),
            sa.Column("party", sa.String(length=10), nullable=True),
            sa.Column("payload_json", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.ForeignKeyConstraint(["agreement_id"], ["rental_agreements.id"], ondelete="CASCADE"),
        )
        op.create_index("ix_rental_events_agreement_id", "rental_events", ["agreement_id"], unique=False)


def downgrade():
    bind = op.get_bind()
    insp = inspect(bind)
    tables = set(insp.get_table_names())

    if "rental_events" in tables:
        try:
            op.drop_index("ix_rental_events_agreement_id", table_name="rental_events")
        except Exception:
            pass
        op.drop_table("rental_events")

    if "rental_agreements" in tables:
        op.drop_table("rental_agreements")
