"""SQLAlchemy 2.0 ORM models for Fundspace.

Import all models here so Alembic's ``env.py`` can discover them via::

    from fundspace.models.db import Base  # noqa: F401

Every model must be imported at module level to register with the
``DeclarativeBase`` metadata.
"""

from fundspace.models.db.base import Base  # noqa: F401

# Canonical grant data
from fundspace.models.db.organization import Organization, OrganizationMember  # noqa: F401
from fundspace.models.db.grant import (  # noqa: F401
    Category,
    Grant,
    GrantCategory,
    GrantLocation,
    Location,
)

# Engagement tracking
from fundspace.models.db.tracking import (  # noqa: F401
    GrantApplication,
    GrantAward,
    SavedGrant,
)
