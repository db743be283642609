"""Grant ORM models.

Maps to the canonical ``grants`` table plus the ``categories`` and
``locations`` tag tables and their many-to-many join rows.  These rows are
read-only from the tracking subsystem's point of view.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Integer, Numeric, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from fundspace.models.db.base import Base

__all__ = ["Grant", "Category", "Location", "GrantCategory", "GrantLocation"]


class Grant(Base):
    __tablename__ = "grants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Core fields
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    grant_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    eligibility_criteria: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    application_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Funding -- either a number or free text such as "Up to $50,000"
    max_funding_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric, nullable=True
    )
    funding_amount_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # NULL deadline means rolling / ongoing
    deadline: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Funder reference
    organization_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("organizations.id"), nullable=True
    )

    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=True
    )


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(Text, nullable=False, unique=True)


class GrantCategory(Base):
    __tablename__ = "grant_categories"

    grant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("grants.id", ondelete="CASCADE"), primary_key=True
    )
    category_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True
    )


class GrantLocation(Base):
    __tablename__ = "grant_locations"

    grant_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("grants.id", ondelete="CASCADE"), primary_key=True
    )
    location_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("locations.id", ondelete="CASCADE"), primary_key=True
    )
