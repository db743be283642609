"""Re-export Base for ORM models."""

from fundspace.database import Base

__all__ = ["Base"]
