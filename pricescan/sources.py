"""Registry of external price sources."""

import logging
from typing import Any

from pricescan.db.repository import SqlAlchemyRepository
from pricescan.domain import PriceScrapingSource, SourceConfig

logger = logging.getLogger(__name__)

# Fields a source update may carry besides its id
UPDATABLE_FIELDS = ("name", "base_url", "country", "is_active", "priority", "rate_limit", "config")


class SourceRegistry:
    """Read active sources and apply configuration changes atomically."""

    def __init__(self, repository: SqlAlchemyRepository):
        self.repository = repository

    async def list_active(self) -> list[PriceScrapingSource]:
        """Active sources ordered by priority (highest first), then name."""
        return await self.repository.find_active_sources()

    async def list_all(self) -> list[PriceScrapingSource]:
        return await self.repository.list_sources()

    async def snapshot(self, source_ids: list[str] | None = None) -> list[PriceScrapingSource]:
        """
        Sources a job will run against, read once at job start.

        An empty or missing ``source_ids`` selects every active source.
        Unknown or inactive ids are ignored.
        """
        active = await self.list_active()
        if not source_ids:
            return active
        wanted = set(source_ids)
        selected = [s for s in active if s.id in wanted or s.name in wanted]
        skipped = wanted - {s.id for s in selected} - {s.name for s in selected}
        if skipped:
            logger.warning(f"Ignoring unknown or inactive sources: {sorted(skipped)}")
        return selected

    async def update(self, sources: list[dict[str, Any]]) -> list[PriceScrapingSource]:
        """
        Apply every update in one transaction.

        Raises:
            SourceNotFound: If any id is unknown; no source is changed
        """
        updates = []
        for source in sources:
            update = {"id": source["id"]}
            for name in UPDATABLE_FIELDS:
                if name in source and source[name] is not None:
                    update[name] = source[name]
            if "config" in update and not isinstance(update["config"], SourceConfig):
                update["config"] = SourceConfig.from_dict(update["config"])
            updates.append(update)

        updated = await self.repository.update_sources(updates)
        logger.info(
            f"Source configuration updated: "
            f"{sum(1 for s in updated if s.is_active)}/{len(updated)} active"
        )
        return updated
