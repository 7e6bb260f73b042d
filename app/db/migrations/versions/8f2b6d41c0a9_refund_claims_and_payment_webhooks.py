"""refund claims and payment webhook fields

Revision ID: 8f2b6d41c0a9
Revises: 3c1d9a7e52b4
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "8f2b6d41c0a9"
down_revision = "3c1d9a7e52b4"
branch_labels = None
depends_on = None


def upgrade():
    with op.batch_alter_table("bookings") as batch:
        batch.add_column(sa.Column("refund_claimed_at", sa.DateTime(), nullable=True))
        batch.add_column(
            sa.Column("provider_refund_ids", sa.JSON(), nullable=False, server_default=sa.text("'[]'"))
        )

    with op.batch_alter_table("room_holds") as batch:
        batch.add_column(sa.Column("payment_id", sa.String(), nullable=True))
        batch.add_column(sa.Column("payment_status", sa.String(), nullable=False, server_default="pending"))
        batch.add_column(sa.Column("failure_reason", sa.String(), nullable=True))

    op.create_index("ix_room_holds_payment_id", "room_holds", ["payment_id"])
    op.create_index("ix_bookings_payment_id", "bookings", ["payment_id"])


def downgrade():
    op.drop_index("ix_bookings_payment_id", table_name="bookings")
    op.drop_index("ix_room_holds_payment_id", table_name="room_holds")

    with op.batch_alter_table("room_holds") as batch:
        batch.drop_column("failure_reason")
        batch.drop_column("payment_status")
        batch.drop_column("payment_id")

    with op.batch_alter_table("bookings") as batch:
        batch.drop_column("provider_refund_ids")
        batch.drop_column("refund_claimed_at")
