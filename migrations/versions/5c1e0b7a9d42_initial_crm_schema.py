"""initial_crm_schema

Revision ID: 5c1e0b7a9d42
Revises:
Create Date: 2026-10-19 09:12:41.318204

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c1e0b7a9d42'
down_revision = None
branch_labels = None
depends_on = None


EXPENSE_CATEGORIES = ("Consulting", "Hosting", "Maintenance", "Development", "Design", "Marketing", "Other")
INVOICE_STATUSES = ("draft", "sent", "paid")


def upgrade():
    # =========================
    # user
    # =========================
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=30), nullable=False, server_default="employee"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_user_email", "user", ["email"], unique=True)

    # =========================
    # client
    # =========================
    op.create_table(
        "client",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("phone", sa.String(length=30), nullable=False),
        sa.Column("company", sa.String(length=160), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="new"),
        sa.Column("assigned_to_id", sa.Integer(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("estimated_value", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_contact_date", sa.DateTime(), nullable=True),
        sa.Column("feedback_requested", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("feedback_requested_at", sa.DateTime(), nullable=True),
        sa.Column("average_rating", sa.Float(), nullable=False, server_default="0"),
        sa.Column("feedback_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["assigned_to_id"], ["user.id"], name="fk_client_assigned_to_user"),
        sa.ForeignKeyConstraint(["created_by_id"], ["user.id"], name="fk_client_created_by_user"),
    )
    op.create_index("ix_client_assigned_status", "client", ["assigned_to_id", "status"])
    op.create_index("ix_client_created_by_id", "client", ["created_by_id"])

    # =========================
    # activity
    # =========================
    op.create_table(
        "activity",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("done", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["client_id"], ["client.id"], name="fk_activity_client", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_id"], ["user.id"], name="fk_activity_created_by_user"),
    )
    op.create_index("ix_activity_client_date", "activity", ["client_id", "date"])
    op.create_index("ix_activity_created_by_id", "activity", ["created_by_id"])

    # =========================
    # task
    # =========================
    op.create_table(
        "task",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("assigned_to_id", sa.Integer(), nullable=False),
        sa.Column("assigned_by_id", sa.Integer(), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=True),
        sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("due_date", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["assigned_to_id"], ["user.id"], name="fk_task_assigned_to_user"),
        sa.ForeignKeyConstraint(["assigned_by_id"], ["user.id"], name="fk_task_assigned_by_user"),
        sa.ForeignKeyConstraint(["client_id"], ["client.id"], name="fk_task_client", ondelete="SET NULL"),
    )
    op.create_index("ix_task_assigned_status", "task", ["assigned_to_id", "status"])
    op.create_index("ix_task_assigned_by_id", "task", ["assigned_by_id"])
    op.create_index("ix_task_due_date", "task", ["due_date"])

    # =========================
    # feedback
    # =========================
    op.create_table(
        "feedback",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.String(length=500), nullable=True),
        sa.Column("service_quality", sa.Integer(), nullable=True),
        sa.Column("communication", sa.Integer(), nullable=True),
        sa.Column("would_recommend", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("submitted_by", sa.String(length=160), nullable=False),
        sa.Column("is_anonymous", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["client_id"], ["client.id"], name="fk_feedback_client", ondelete="CASCADE"),
        sa.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_feedback_rating_range"),
    )
    op.create_index("ix_feedback_client_id", "feedback", ["client_id"])
    op.create_index("ix_feedback_status", "feedback", ["status"])

    # =========================
    # invoice
    # =========================
    op.create_table(
        "invoice",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_number", sa.String(length=40), nullable=False),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column(
            "status",
            sa.Enum(*INVOICE_STATUSES, name="invoice_status", native_enum=False),
            nullable=False,
            server_default="draft",
        ),
        sa.Column("issue_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=False, server_default=""),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["client_id"], ["client.id"], name="fk_invoice_client", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_id"], ["user.id"], name="fk_invoice_created_by_user"),
        sa.UniqueConstraint("invoice_number", name="uq_invoice_invoice_number"),
    )
    op.create_index("ix_invoice_client_id", "invoice", ["client_id"])

    # =========================
    # expense
    # invoice_id set exactly when is_invoiced
    # =========================
    op.create_table(
        "expense",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column(
            "category",
            sa.Enum(*EXPENSE_CATEGORIES, name="expense_category", native_enum=False),
            nullable=False,
            server_default="Other",
        ),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("created_by_id", sa.Integer(), nullable=False),
        sa.Column("is_invoiced", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["client_id"], ["client.id"], name="fk_expense_client", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["created_by_id"], ["user.id"], name="fk_expense_created_by_user"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoice.id"], name="fk_expense_invoice", ondelete="SET NULL"),
        sa.CheckConstraint(
            "(is_invoiced AND invoice_id IS NOT NULL) OR (NOT is_invoiced AND invoice_id IS NULL)",
            name="ck_expense_invoiced_reference",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_expense_amount_non_negative"),
    )
    op.create_index("ix_expense_client_date", "expense", ["client_id", "date"])
    op.create_index("ix_expense_created_by_id", "expense", ["created_by_id"])
    op.create_index("ix_expense_is_invoiced", "expense", ["is_invoiced"])

    # =========================
    # invoice_expense
    # ordered invoice -> expense references
    # =========================
    op.create_table(
        "invoice_expense",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("expense_id", sa.Integer(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["invoice_id"], ["invoice.id"], name="fk_invoice_expense_invoice", ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["expense_id"], ["expense.id"], name="fk_invoice_expense_expense", ondelete="CASCADE"),
        sa.UniqueConstraint("invoice_id", "expense_id", name="uq_invoice_expense"),
    )
    op.create_index("ix_invoice_expense_invoice_id", "invoice_expense", ["invoice_id"])
    op.create_index("ix_invoice_expense_expense_id", "invoice_expense", ["expense_id"])


def downgrade():
    op.drop_table("invoice_expense")
    op.drop_table("expense")
    op.drop_table("invoice")
    op.drop_table("feedback")
    op.drop_table("task")
    op.drop_table("activity")
    op.drop_table("client")
    op.drop_table("user")
