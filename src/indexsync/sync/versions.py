"""Index version lifecycle.

Each entity type is served through an alias named after its index. Behind
the alias sit physical versions ``<index>_<suffix>``; the alias target is
the Current version. Promotion is one atomic alias swap, so readers always
see a complete version.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from indexsync.core.errors import BackendUnavailableError, ConnectionFailedError, ignore_not_found
from indexsync.models import IndexVersion, VersionStatus, version_created_at, version_sort_key

if TYPE_CHECKING:
    from indexsync.models import EntityType
    from indexsync.search.client import SearchClient
    from indexsync.sync.leases import RebuildLeases
    from indexsync.sync.registry import EntityRegistry

logger = structlog.get_logger()


class VersionManager:
    """Creates, lists, promotes and prunes physical index versions."""

    def __init__(
        self,
        registry: EntityRegistry,
        client: SearchClient | None,
        leases: RebuildLeases | None = None,
    ) -> None:
        self.registry = registry
        self.client = client
        self.leases = leases

    def _require_client(self, operation: str, entity_type: EntityType) -> SearchClient:
        if self.client is None:
            raise BackendUnavailableError.for_operation(operation, entity_type.name)
        return self.client

    def _status_of(self, base: str, version: str, current: str | None) -> VersionStatus:
        if current is None:
            return VersionStatus.BUILDING
        if version == current:
            return VersionStatus.CURRENT
        if version_sort_key(base, version) > version_sort_key(base, current):
            return VersionStatus.BUILDING
        return VersionStatus.STALE

    def _version(self, base: str, name: str, current: str | None) -> IndexVersion:
        return IndexVersion(
            name=name,
            base_name=base,
            status=self._status_of(base, name, current),
            created_at=version_created_at(base, name),
        )

    def create_version(self, entity_name: str, *, promote: bool = True) -> IndexVersion:
        """Create a new physical version, applying the type's mapping.

        With ``promote`` the new version becomes Current straight away.

        Raises:
            BackendUnavailableError: No search client.
            ConnectionFailedError: Backend unreachable.
            RemoteRejectedError: The backend refused to create the index.
        """
        entity_type = self.registry.get(entity_name)
        client = self._require_client("create index version", entity_type)
        base = entity_type.index_name

        name = client.create_index_version(base, dict(entity_type.index_options) or None)
        if entity_type.mapping:
            client.update_mapping(
                dict(entity_type.mapping), index=name, doc_type=entity_type.doc_type
            )
        logger.info("index_version_created", entity_type=entity_type.name, version=name)

        version = IndexVersion(
            name=name,
            base_name=base,
            status=VersionStatus.BUILDING,
            created_at=version_created_at(base, name),
        )
        if promote:
            return self.promote(entity_name, name)
        return version

    def promote(self, entity_name: str, version: str) -> IndexVersion:
        """Atomically point the alias at ``version``."""
        entity_type = self.registry.get(entity_name)
        client = self._require_client("promote index version", entity_type)
        base = entity_type.index_name
        client.swap_current(base, version)
        logger.info("index_version_promoted", entity_type=entity_type.name, version=version)
        return IndexVersion(
            name=version,
            base_name=base,
            status=VersionStatus.CURRENT,
            created_at=version_created_at(base, version),
        )

    def list_versions(self, entity_name: str) -> list[IndexVersion]:
        """All versions, newest first. Empty when the backend is unavailable."""
        entity_type = self.registry.get(entity_name)
        if self.client is None:
            return []
        base = entity_type.index_name
        try:
            names = self.client.list_index_versions(base)
            current = self.client.current_index_version(base)
        except ConnectionFailedError as e:
            logger.warning("list_versions_unavailable", entity_type=entity_type.name, error=e.message)
            return []
        return [self._version(base, name, current) for name in names]

    def current_version(self, entity_name: str) -> IndexVersion | None:
        """The Current version, or None when it cannot be resolved."""
        entity_type = self.registry.get(entity_name)
        if self.client is None:
            return None
        base = entity_type.index_name
        try:
            current = self.client.current_index_version(base)
        except ConnectionFailedError as e:
            logger.warning("current_version_unavailable", entity_type=entity_type.name, error=e.message)
            return None
        if current is None:
            return None
        return self._version(base, current, current)

    def prune_versions(self, entity_name: str) -> list[str]:
        """Delete every version except Current; returns the deleted names.

        Nothing is pruned while there is no Current version. While a rebuild
        of the type holds its lease, versions newer than Current are the
        ones being filled and are kept.
        """
        entity_type = self.registry.get(entity_name)
        if self.client is None:
            logger.warning("prune_skipped_backend_unavailable", entity_type=entity_type.name)
            return []
        base = entity_type.index_name
        current = self.client.current_index_version(base)
        if current is None:
            logger.warning("prune_skipped_no_current", entity_type=entity_type.name)
            return []
        rebuilding = self.leases is not None and self.leases.holder(entity_type.name) is not None

        pruned: list[str] = []
        for name in self.client.list_index_versions(base):
            if name == current:
                continue
            if rebuilding and version_sort_key(base, name) > version_sort_key(base, current):
                logger.debug(
                    "prune_kept_building_version", entity_type=entity_type.name, version=name
                )
                continue
            with ignore_not_found() as absent:
                self.client.delete_index_version(name)
            if absent.suppressed:
                logger.debug("index_version_already_absent", version=name)
            pruned.append(name)
        if pruned:
            logger.info(
                "index_versions_pruned",
                entity_type=entity_type.name,
                current=current,
                pruned=len(pruned),
            )
        return pruned

    def drop_index(self, entity_name: str) -> list[str]:
        """Delete every version and the base index name itself."""
        entity_type = self.registry.get(entity_name)
        if self.client is None:
            logger.warning("drop_skipped_backend_unavailable", entity_type=entity_type.name)
            return []
        base = entity_type.index_name
        dropped: list[str] = []
        for name in self.client.list_index_versions(base):
            with ignore_not_found():
                self.client.delete_index_version(name)
            dropped.append(name)
        with ignore_not_found():
            self.client.delete_index(base)
        logger.info("index_dropped", entity_type=entity_type.name, versions=len(dropped))
        return dropped

    def refresh(self, entity_name: str, version: str | None = None) -> None:
        entity_type = self.registry.get(entity_name)
        if self.client is None:
            logger.warning("refresh_skipped_backend_unavailable", entity_type=entity_type.name)
            return
        self.client.refresh(version or entity_type.index_name)

    def optimize(self, entity_name: str) -> None:
        entity_type = self.registry.get(entity_name)
        if self.client is None:
            logger.warning("optimize_skipped_backend_unavailable", entity_type=entity_type.name)
            return
        self.client.optimize(entity_type.index_name)
        logger.info("index_optimized", entity_type=entity_type.name)
