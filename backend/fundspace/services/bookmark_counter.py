"""Aggregate bookmark counts: how many distinct users saved each grant."""

import logging
from collections.abc import Iterable

from fundspace.services.store_gateway import DataStoreGateway

logger = logging.getLogger(__name__)


class BookmarkCounter:
    """Counts distinct savers per grant straight from ``saved_grants``.

    The count reads stored save rows, not any actor's Saved view, so a grant
    that was saved and then applied to still counts its saver.
    """

    def __init__(self, gateway: DataStoreGateway):
        self.gateway = gateway

    async def counts(self, grant_ids: Iterable[int]) -> dict[int, int]:
        """Return ``{grant_id: count}`` with ``0`` for grants nobody saved."""
        grant_ids = list(dict.fromkeys(grant_ids))
        if not grant_ids:
            return {}
        found = await self.gateway.count_distinct_actors(
            "saved_grants", "grant_id", grant_ids, actor_field="user_id"
        )
        return {grant_id: int(found.get(grant_id, 0)) for grant_id in grant_ids}

    async def count(self, grant_id: int) -> int:
        return (await self.counts([grant_id]))[grant_id]
