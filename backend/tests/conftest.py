"""Shared fixtures for the Fundspace test suite."""

import sys
import os

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))
sys.path.insert(0, os.path.dirname(__file__))

from fakes import FakeGateway, catalog_tables  # noqa: E402
from fundspace.models.tracking_models import Scope  # noqa: E402


@pytest.fixture
def gateway():
    """FakeGateway preloaded with the sample catalog."""
    return FakeGateway(catalog_tables())


@pytest.fixture
def individual_scope():
    return Scope(kind="individual", id="user-1", actor_id="user-1")


@pytest.fixture
def org_scope():
    return Scope(kind="organization", id="7", actor_id="admin-user")
