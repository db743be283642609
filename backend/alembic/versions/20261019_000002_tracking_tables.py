"""Create tracking tables: saved_grants, grant_applications, grant_awards.

Applications and awards are owned by a scope (``scope_kind`` + ``scope_id``)
so organization admins share them.  The unique constraints make a second
concurrent "mark" for the same (grant, scope) fail instead of landing twice.

Revision ID: 0002_tracking
Revises: 0001_grant_catalog
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0002_tracking"
down_revision: Union[str, None] = "0001_grant_catalog"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _grant_fk() -> sa.Column:
    return sa.Column(
        "grant_id",
        sa.Integer(),
        sa.ForeignKey("grants.id", ondelete="CASCADE"),
        nullable=False,
    )


def upgrade() -> None:
    # --- saved_grants ---
    op.create_table(
        "saved_grants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _grant_fk(),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("grant_id", "user_id", name="uq_saved_grant_user"),
    )
    op.create_index("ix_saved_grants_user_id", "saved_grants", ["user_id"])

    # --- grant_applications ---
    op.create_table(
        "grant_applications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _grant_fk(),
        sa.Column("scope_kind", sa.Text(), nullable=False),
        sa.Column("scope_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), server_default="submitted"),
        sa.Column(
            "applied_date",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint(
            "grant_id", "scope_kind", "scope_id", name="uq_application_grant_scope"
        ),
        sa.CheckConstraint(
            "scope_kind IN ('individual','organization')",
            name="grant_applications_scope_kind_check",
        ),
    )
    op.create_index("ix_grant_applications_scope_id", "grant_applications", ["scope_id"])

    # --- grant_awards ---
    op.create_table(
        "grant_awards",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        _grant_fk(),
        sa.Column("scope_kind", sa.Text(), nullable=False),
        sa.Column("scope_id", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=True),
        sa.Column("award_amount", sa.Numeric(), nullable=True),
        sa.Column(
            "award_date",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("status", sa.Text(), server_default="active"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.UniqueConstraint(
            "grant_id", "scope_kind", "scope_id", name="uq_award_grant_scope"
        ),
        sa.CheckConstraint(
            "scope_kind IN ('individual','organization')",
            name="grant_awards_scope_kind_check",
        ),
    )
    op.create_index("ix_grant_awards_scope_id", "grant_awards", ["scope_id"])


def downgrade() -> None:
    op.drop_index("ix_grant_awards_scope_id", table_name="grant_awards")
    op.drop_table("grant_awards")
    op.drop_index("ix_grant_applications_scope_id", table_name="grant_applications")
    op.drop_table("grant_applications")
    op.drop_index("ix_saved_grants_user_id", table_name="saved_grants")
    op.drop_table("saved_grants")
