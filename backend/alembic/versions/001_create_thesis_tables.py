"""Create chapter and payment tables

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  chapters with their files, feedback and revisions; payments.
How:   Portable types (sa.Uuid, sa.JSON) so the same schema runs on
       PostgreSQL and SQLite. version_id backs the ORM's optimistic locking.

Rollback: downgrade() drops every table (destructive).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    op.create_table(
        "chapters",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False, comment="Owning student"),
        sa.Column("writer_id", sa.Uuid(), nullable=True, comment="Assigned writer, if claimed"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("summary", sa.String(500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        _timestamp("deadline", nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'draft'")),
        sa.Column("chapter_number", sa.Integer(), nullable=False),
        sa.Column("word_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("target_word_count", sa.Integer(), nullable=False, server_default=sa.text("2000")),
        sa.Column("level", sa.String(20), nullable=False, server_default=sa.text("'masters'")),
        sa.Column("work_type", sa.String(20), nullable=False, server_default=sa.text("'coursework'")),
        sa.Column("urgency", sa.String(20), nullable=False, server_default=sa.text("'normal'")),
        sa.Column("estimated_pages", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("estimated_cost", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("pricing", sa.JSON(), nullable=False, comment="Price breakdown snapshot"),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_id", sa.Uuid(), nullable=True, comment="Payment that paid for this chapter"),
        _timestamp("completed_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "chapter_number", name="uq_chapters_user_number"),
    )
    op.create_index("ix_chapters_user_id", "chapters", ["user_id"])
    op.create_index("ix_chapters_writer_id", "chapters", ["writer_id"])
    # Writer earnings: completed chapters by completion date
    op.create_index("idx_chapters_status_completed_at", "chapters", ["status", "completed_at"])

    op.create_table(
        "chapter_files",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("chapter_id", sa.Uuid(), nullable=False),
        sa.Column("original_name", sa.String(255), nullable=False),
        sa.Column("file_name", sa.String(255), nullable=False),
        sa.Column("file_path", sa.String(512), nullable=False, comment="Relative to STORAGE_ROOT"),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("file_type", sa.String(100), nullable=False),
        _timestamp("uploaded_at"),
        sa.ForeignKeyConstraint(["chapter_id"], ["chapters.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("file_name"),
    )
    op.create_index("ix_chapter_files_chapter_id", "chapter_files", ["chapter_id"])

    op.create_table(
        "chapter_feedback",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("chapter_id", sa.Uuid(), nullable=False),
        sa.Column("reviewer", sa.String(200), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["chapter_id"], ["chapters.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_chapter_feedback_chapter_id", "chapter_feedback", ["chapter_id"])

    op.create_table(
        "chapter_revisions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("chapter_id", sa.Uuid(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "changes", sa.String(500), nullable=False, server_default=sa.text("'Content updated'")
        ),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["chapter_id"], ["chapters.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("chapter_id", "version", name="uq_chapter_revisions_version"),
    )
    op.create_index("ix_chapter_revisions_chapter_id", "chapter_revisions", ["chapter_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("chapter_id", sa.Uuid(), nullable=True),
        sa.Column("amount", sa.Float(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'KSH'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("payment_method", sa.String(50), nullable=False),
        sa.Column("description", sa.String(500), nullable=False),
        sa.Column(
            "type", sa.String(50), nullable=False, server_default=sa.text("'chapter_payment'")
        ),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("transaction_id", sa.String(64), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("refund_amount", sa.Float(), nullable=True),
        sa.Column("refund_reason", sa.Text(), nullable=True),
        _timestamp("completed_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(["chapter_id"], ["chapters.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transaction_id"),
    )
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    op.create_index("ix_payments_chapter_id", "payments", ["chapter_id"])
    op.create_index("idx_payments_user_created_at", "payments", ["user_id", "created_at"])


def downgrade() -> None:
    op.drop_index("idx_payments_user_created_at", table_name="payments")
    op.drop_index("ix_payments_chapter_id", table_name="payments")
    op.drop_index("ix_payments_user_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_chapter_revisions_chapter_id", table_name="chapter_revisions")
    op.drop_table("chapter_revisions")
    op.drop_index("ix_chapter_feedback_chapter_id", table_name="chapter_feedback")
    op.drop_table("chapter_feedback")
    op.drop_index("ix_chapter_files_chapter_id", table_name="chapter_files")
    op.drop_table("chapter_files")
    op.drop_index("idx_chapters_status_completed_at", table_name="chapters")
    op.drop_index("ix_chapters_writer_id", table_name="chapters")
    op.drop_index("ix_chapters_user_id", table_name="chapters")
    op.drop_table("chapters")
