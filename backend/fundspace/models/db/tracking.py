"""Engagement tracking ORM models.

Maps to ``saved_grants``, ``grant_applications`` and ``grant_awards``.
The unique constraints below are what keeps two concurrent "mark applied"
requests for the same (grant, scope) from both landing; client-side
existence checks only save a round trip.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, Numeric, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from fundspace.models.db.base import Base

__all__ = ["SavedGrant", "GrantApplication", "GrantAward"]


class SavedGrant(Base):
    __tablename__ = "saved_grants"
    __table_args__ = (
        UniqueConstraint("grant_id", "user_id", name="uq_saved_grant_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    grant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("grants.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)

    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )


class GrantApplication(Base):
    __tablename__ = "grant_applications"
    __table_args__ = (
        UniqueConstraint(
            "grant_id", "scope_kind", "scope_id", name="uq_application_grant_scope"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    grant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("grants.id", ondelete="CASCADE"), nullable=False
    )

    # Ownership scope: "individual" + user id, or "organization" + org id
    scope_kind: Mapped[str] = mapped_column(Text, nullable=False)
    scope_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    # Who pressed the button
    user_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[Optional[str]] = mapped_column(
        Text, server_default="submitted", nullable=True
    )
    applied_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class GrantAward(Base):
    __tablename__ = "grant_awards"
    __table_args__ = (
        UniqueConstraint(
            "grant_id", "scope_kind", "scope_id", name="uq_award_grant_scope"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    grant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("grants.id", ondelete="CASCADE"), nullable=False
    )

    scope_kind: Mapped[str] = mapped_column(Text, nullable=False)
    scope_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    award_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric, nullable=True)
    award_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )
    status: Mapped[Optional[str]] = mapped_column(
        Text, server_default="active", nullable=True
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
