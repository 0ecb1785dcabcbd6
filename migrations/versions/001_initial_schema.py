"""Initial schema: users, rides, chats, messages and read receipts.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ── users ─────────────────────────────────────────────────────────
    op.create_table(
        "users",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("first_name", sa.String(80), nullable=False),
        sa.Column("last_name", sa.String(80), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("phone_number", sa.String(32), nullable=True),
        sa.Column(
            "role",
            sa.Enum("commuter", "driver", "admin", name="userrole"),
            nullable=False,
            server_default="commuter",
        ),
        sa.Column("toda_name", sa.String(120), nullable=True),
        sa.Column("is_banned", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "passenger_id", sa.String(32), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("passenger_first_name", sa.String(80), nullable=False),
        sa.Column("passenger_last_name", sa.String(80), nullable=False),
        sa.Column("pickup_name", sa.String(255), nullable=False),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_name", sa.String(255), nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("distance_km", sa.Float, nullable=False),
        sa.Column("fare", sa.Float, nullable=False),
        sa.Column("toda_name", sa.String(120), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "pending",
                "accepted",
                "in-progress",
                "completed",
                "cancelled",
                name="ridestatus",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("driver_id", sa.String(32), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "cancelled_by",
            sa.Enum("user", "driver", "admin", name="cancelledby"),
            nullable=True,
        ),
        sa.Column("cancelled_reason", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_rides_status_toda", "rides", ["status", "toda_name"])
    op.create_index("idx_rides_passenger", "rides", ["passenger_id", "created_at"])
    op.create_index("idx_rides_driver", "rides", ["driver_id", "created_at"])

    # ── chats ─────────────────────────────────────────────────────────
    op.create_table(
        "chats",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("member_a", sa.String(32), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("member_b", sa.String(32), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("last_message_id", sa.String(32), nullable=True),
        sa.Column("unread_message_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("member_a", "member_b", name="uq_chats_members"),
    )
    op.create_index("idx_chats_member_b", "chats", ["member_b"])

    # ── messages ──────────────────────────────────────────────────────
    op.create_table(
        "messages",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("chat_id", sa.String(32), sa.ForeignKey("chats.id"), nullable=False),
        sa.Column("sender_id", sa.String(32), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("text", sa.Text, nullable=False),
        sa.Column(
            "type",
            sa.Enum("text", "image", "system", name="messagetype"),
            nullable=False,
            server_default="text",
        ),
        sa.Column("read", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_messages_chat_created", "messages", ["chat_id", "created_at"])

    # ── message_reads ─────────────────────────────────────────────────
    op.create_table(
        "message_reads",
        sa.Column(
            "message_id", sa.String(32), sa.ForeignKey("messages.id"), primary_key=True
        ),
        sa.Column("user_id", sa.String(32), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column(
            "read_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )


def downgrade() -> None:
    op.drop_table("message_reads")
    op.drop_table("messages")
    op.drop_table("chats")
    op.drop_table("rides")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS messagetype")
    op.execute("DROP TYPE IF EXISTS cancelledby")
    op.execute("DROP TYPE IF EXISTS ridestatus")
    op.execute("DROP TYPE IF EXISTS userrole")
