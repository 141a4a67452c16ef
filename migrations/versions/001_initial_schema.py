"""Initial schema: users and versioned ride aggregates.

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
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column(
            "role",
            sa.Enum("passenger", "driver", name="userrole"),
            nullable=False,
            server_default="passenger",
        ),
        sa.Column("vehicle", sa.JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("users.id"), nullable=True
        ),
        sa.Column("route", sa.JSON, nullable=False),
        sa.Column("passengers", sa.JSON, nullable=False),
        sa.Column("approvals", sa.JSON, nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "searching",
                "scheduled",
                "ongoing",
                "completed",
                "cancelled",
                name="ridestatus",
            ),
            nullable=False,
            server_default="searching",
        ),
        sa.Column("base_fare", sa.Float, nullable=False, server_default="0"),
        sa.Column("current_total", sa.Float, nullable=False, server_default="0"),
        sa.Column("otp", sa.String(4), nullable=False),
        sa.Column(
            "otp_verified", sa.Boolean, nullable=False, server_default=sa.false()
        ),
        sa.Column("seats_requested", sa.Integer, nullable=False, server_default="1"),
        sa.Column("max_passengers", sa.Integer, nullable=False, server_default="3"),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
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
    )
    op.create_index("idx_rides_status", "rides", ["status"])
    op.create_index("idx_rides_driver", "rides", ["driver_id"])


def downgrade() -> None:
    op.drop_index("idx_rides_driver", table_name="rides")
    op.drop_index("idx_rides_status", table_name="rides")
    op.drop_table("rides")
    op.drop_table("users")
    sa.Enum(name="ridestatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="userrole").drop(op.get_bind(), checkfirst=True)
