"""Canonical, deduplicated material catalog with usage statistics."""

from __future__ import annotations

import logging
from typing import List, Optional

from .models import Material, MaterialDescriptor
from .store import Store
from .trades import classify_trade

logger = logging.getLogger(__name__)


class MaterialRegistry:
    """Resolve material descriptors to catalog entries keyed by ``(name, trade)``.

    Every resolution of an existing entry bumps ``times_used`` and refreshes
    ``last_used``; entries are never removed, only deactivated.
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    def resolve(self, descriptor: MaterialDescriptor) -> Material:
        """Create or touch the entry for ``descriptor``.

        Raises :class:`gccore.errors.RegistryError` when the write fails.
        """

        if not descriptor.trade:
            descriptor.trade = classify_trade(None, descriptor.category)
        material = self.store.resolve_material(descriptor)
        logger.debug(
            "Resolved material '%s' (%s) -> %s, used %d times",
            material.name,
            material.trade,
            material.id,
            material.times_used,
        )
        return material

    def get(self, material_id: str) -> Material:
        return self.store.get_material(material_id)

    def find(self, name: str, trade: str) -> Optional[Material]:
        return self.store.find_material(name, trade)

    def search(
        self,
        query: Optional[str] = None,
        *,
        trade: Optional[str] = None,
        category: Optional[str] = None,
        limit: int = 50,
    ) -> List[Material]:
        """Active materials, most used first."""

        return self.store.search_materials(search=query, trade=trade, category=category, limit=limit)

    def deactivate(self, material_id: str) -> None:
        self.store.deactivate_material(material_id)
        logger.info("Deactivated material %s", material_id)


__all__ = ["MaterialRegistry"]
