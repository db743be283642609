"""Decide who owns tracking records for an acting user.

Admins of a linked organization track applications and awards on behalf of
that organization; everyone else tracks them as an individual.  Resolve once
per request and pass the resulting :class:`Scope` down explicitly.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from fundspace.models.tracking_models import Scope
from fundspace.services.store_gateway import DataStoreGateway

logger = logging.getLogger(__name__)

ADMIN_ROLES = frozenset({"super_admin", "admin"})


def resolve_scope(actor_id: str, memberships: Iterable[Mapping[str, Any]]) -> Scope:
    """Pure scope rule over an actor's ``organization_members`` rows.

    If the actor administers several organizations the lowest organization
    id wins, so repeated resolutions agree with each other.
    """
    admin_orgs = sorted(
        m["organization_id"]
        for m in memberships
        if m.get("role") in ADMIN_ROLES and m.get("organization_id") is not None
    )
    if admin_orgs:
        return Scope(kind="organization", id=str(admin_orgs[0]), actor_id=str(actor_id))
    return Scope(kind="individual", id=str(actor_id), actor_id=str(actor_id))


class ScopeResolver:
    """Reads memberships through the gateway and applies :func:`resolve_scope`."""

    def __init__(self, gateway: DataStoreGateway):
        self.gateway = gateway

    async def resolve(self, actor_id: str) -> Scope:
        memberships = await self.gateway.query_by_scope(
            "organization_members", "user_id", str(actor_id)
        )
        scope = resolve_scope(actor_id, memberships)
        logger.debug("Resolved actor %s to %s scope %s", actor_id, scope.kind, scope.id)
        return scope
