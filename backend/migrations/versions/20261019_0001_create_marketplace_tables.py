"""create users, listings, chats and messages

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = inspect(bind)
    tables = set(insp.get_table_names())

    # Tables may already exist when created with db.create_all().
    if "users" not in tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("username", sa.String(length=80), nullable=False, unique=True),
            sa.Column("email", sa.String(length=255), nullable=True, unique=True),
            sa.Column("college", sa.String(length=150), nullable=False, server_default="Alliance University"),
            sa.Column("avatar", sa.String(length=500), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        )

    if "listings" not in tables:
        op.create_table(
            "listings",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("seller_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=150), nullable=False),
            sa.Column("description", sa.Text(), nullable=False),
            sa.Column("price", sa.Integer(), nullable=False),
            sa.Column("category", sa.String(length=80), nullable=False),
            sa.Column("type", sa.String(length=10), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="available"),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.ForeignKeyConstraint(["seller_id"], ["users.id"], ondelete="RESTRICT"),
        )
        op.create_index("ix_listings_seller_id", "listings", ["seller_id"], unique=False)

    if "chats" not in tables:
        op.create_table(
            "chats",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("listing_id", sa.Integer(), nullable=False),
            sa.Column("buyer_id", sa.Integer(), nullable=False),
            sa.Column("seller_id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.ForeignKeyConstraint(["listing_id"], ["listings.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["buyer_id"], ["users.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["seller_id"], ["users.id"], ondelete="RESTRICT"),
            sa.UniqueConstraint("listing_id", "buyer_id", name="uq_chats_listing_buyer"),
        )
        op.create_index("ix_chats_listing_id", "chats", ["listing_id"], unique=False)
        op.create_index("ix_chats_buyer_id", "chats", ["buyer_id"], unique=False)
        op.create_index("ix_chats_seller_id", "chats", ["seller_id"], unique=False)

    if "messages" not in tables:
        op.create_table(
            "messages",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("chat_id", sa.Integer(), nullable=False),
            sa.Column("sender_id", sa.Integer(), nullable=True),
            sa.Column("content", sa.String(length=500), nullable=False),
            sa.Column("is_system", sa.Boolean(), server_default=sa.text("0"), nullable=False),
            sa.Column("event_key", sa.String(length=120), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.ForeignKeyConstraint(["chat_id"], ["chats.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["sender_id"], ["users.id"], ondelete="RESTRICT"),
        )
        op.create_index("ix_messages_chat_id", "messages", ["chat_id"], unique=False)
        op.create_index("ix_messages_sender_id", "messages", ["sender_id"], unique=False)
        op.create_index("ix_messages_event_key", "messages", ["event_key"], unique=False)
        op.create_index("ix_messages_created_at", "messages", ["created_at"], unique=False)


def downgrade():
    bind = op.get_bind()
    insp = inspect(bind)
    tables = set(insp.get_table_names())

    for table in ("messages", "chats", "listings", "users"):
        if table in tables:
            op.drop_table(table)
