"""initial schema

Revision ID: 202601050900
Revises:
Create Date: 2026-01-05 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202601050900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("birthday", sa.Date(), nullable=False),
        sa.Column("email", sa.String(length=254), unique=True),
        sa.Column("phone_number", sa.String(length=20)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("userid", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column("category", sa.String(length=40), nullable=False),
        sa.Column("sum", sa.Float(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("sum >= 0", name="ck_transactions_sum_positive"),
    )
    op.create_index(
        "ix_transactions_user_created", "transactions", ["userid", "created_at"]
    )
    op.create_index(
        "ix_transactions_user_type_created",
        "transactions",
        ["userid", "type", "created_at"],
    )

    op.create_table(
        "reports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("userid", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("saved_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("userid", "year", "month", name="uq_report_user_month"),
        sa.CheckConstraint("month >= 1 AND month <= 12", name="ck_report_month_range"),
    )

    op.create_table(
        "request_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("level", sa.Enum("info", "error", name="loglevel"), nullable=False),
        sa.Column("endpoint", sa.String(length=200), nullable=False),
        sa.Column("method", sa.String(length=10), nullable=False),
        sa.Column("status_code", sa.Integer()),
        sa.Column("userid", sa.Integer()),
        sa.Column("duration_ms", sa.Float()),
        sa.Column("timestamp", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_request_logs_timestamp", "request_logs", ["timestamp"])
    op.create_index("ix_request_logs_endpoint", "request_logs", ["endpoint"])


def downgrade():
    op.drop_index("ix_request_logs_endpoint", table_name="request_logs")
    op.drop_index("ix_request_logs_timestamp", table_name="request_logs")
    op.drop_table("request_logs")
    op.drop_table("reports")
    op.drop_index("ix_transactions_user_type_created", table_name="transactions")
    op.drop_index("ix_transactions_user_created", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("users")
