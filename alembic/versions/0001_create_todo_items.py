"""create todo_items

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

todo_status = sa.Enum("NOT_DONE", "DONE", "PAST_DUE", name="todo_status")


def upgrade() -> None:
    op.create_table(
        "todo_items",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("description", sa.String(), nullable=False),
        sa.Column("status", todo_status, nullable=False),
        sa.Column("creation_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("due_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("done_datetime", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_todo_items_status", "todo_items", ["status"])
    op.create_index("ix_todo_items_due_datetime", "todo_items", ["due_datetime"])


def downgrade() -> None:
    op.drop_index("ix_todo_items_due_datetime", table_name="todo_items")
    op.drop_index("ix_todo_items_status", table_name="todo_items")
    op.drop_table("todo_items")
    todo_status.drop(op.get_bind(), checkfirst=True)
