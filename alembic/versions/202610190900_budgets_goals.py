"""budgets and goals

Revision ID: 202610190900
Revises: 202601050900
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = "202601050900"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("userid", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum("total", "category", name="budgetscope"), nullable=False
        ),
        sa.Column("category", sa.String(length=40)),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column(
            "currency", sa.Enum("ILS", "USD", "EUR", name="currency"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_budgets_amount_positive"),
        sa.CheckConstraint("month >= 1 AND month <= 12", name="ck_budgets_month_range"),
        sa.UniqueConstraint(
            "userid", "year", "month", "type", "category", name="uq_budget_scope_month"
        ),
    )
    op.create_index("ix_budgets_user_month", "budgets", ["userid", "year", "month"])

    op.create_table(
        "goals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("userid", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("target_amount", sa.Float(), nullable=False),
        sa.Column("current_amount", sa.Float(), nullable=False),
        sa.Column("deadline", sa.Date()),
        sa.Column("category", sa.String(length=40)),
        sa.Column(
            "currency", sa.Enum("ILS", "USD", "EUR", name="currency"), nullable=False
        ),
        sa.Column(
            "status",
            sa.Enum("active", "completed", "paused", name="goalstatus"),
            nullable=False,
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("target_amount >= 0", name="ck_goals_target_positive"),
        sa.CheckConstraint("current_amount >= 0", name="ck_goals_current_positive"),
    )
    op.create_index("ix_goals_user_status", "goals", ["userid", "status"])
    op.create_index("ix_goals_user_deadline", "goals", ["userid", "deadline"])


def downgrade():
    op.drop_index("ix_goals_user_deadline", table_name="goals")
    op.drop_index("ix_goals_user_status", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_budgets_user_month", table_name="budgets")
    op.drop_table("budgets")
