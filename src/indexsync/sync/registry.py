"""Registry of indexed entity types.

Constructed once at startup and handed to the dispatcher, worker and
version manager. The only mutable piece is each type's update policy,
which changes solely through ``set_policy``.
"""

from __future__ import annotations

import re
import threading
from collections.abc import Iterator
from dataclasses import replace
from typing import TYPE_CHECKING, Any

import structlog

from indexsync.core.errors import UnknownEntityTypeError
from indexsync.models import EntityType, UpdatePolicy, default_doc_type

if TYPE_CHECKING:
    from indexsync.config.models import EntityConfig

logger = structlog.get_logger()


def default_index_name(name: str) -> str:
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "_", name.replace("::", "_")).lower()


class EntityRegistry:
    """Registered entity types, keyed by name."""

    def __init__(self, entity_types: list[EntityType] | None = None) -> None:
        self._types: dict[str, EntityType] = {}
        self._policies: dict[str, UpdatePolicy] = {}
        self._lock = threading.Lock()
        for entity_type in entity_types or []:
            self.register(entity_type)

    @classmethod
    def from_config(cls, entities: dict[str, EntityConfig]) -> EntityRegistry:
        """Build a registry from the ``entities`` config section."""
        registry = cls()
        for name, cfg in entities.items():
            index_name = cfg.index_name or default_index_name(name)
            registry.register(
                EntityType(
                    name=name,
                    index_name=index_name,
                    doc_type=cfg.doc_type or default_doc_type(name),
                    update_policy=cfg.updates,
                    mapping=cfg.mapping,
                    index_options=cfg.index_options,
                    id_field=cfg.id_field,
                    table=cfg.table or index_name,
                )
            )
        return registry

    def register(self, entity_type: EntityType) -> EntityType:
        """Register a type. Re-registering the same name replaces it.

        Raises:
            InvalidPolicyError: The type's update policy is not a supported value.
        """
        policy = UpdatePolicy.parse(entity_type.update_policy)
        entity_type = replace(entity_type, update_policy=policy)
        with self._lock:
            self._types[entity_type.name] = entity_type
            self._policies[entity_type.name] = policy
        logger.debug(
            "entity_type_registered",
            entity_type=entity_type.name,
            index=entity_type.index_name,
            policy=policy.value,
        )
        return entity_type

    def get(self, name: str) -> EntityType:
        try:
            return self._types[name]
        except KeyError:
            raise UnknownEntityTypeError.named(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._types

    def __iter__(self) -> Iterator[EntityType]:
        return iter(list(self._types.values()))

    def __len__(self) -> int:
        return len(self._types)

    def names(self) -> list[str]:
        return sorted(self._types)

    def policy(self, name: str) -> UpdatePolicy:
        self.get(name)
        return self._policies[name]

    def set_policy(self, name: str, value: Any) -> UpdatePolicy:
        """Assign a new policy. Invalid values leave the current one in place.

        Raises:
            UnknownEntityTypeError: ``name`` is not registered.
            InvalidPolicyError: ``value`` is not a supported policy.
        """
        self.get(name)
        policy = UpdatePolicy.parse(value)
        with self._lock:
            previous = self._policies[name]
            self._policies[name] = policy
        if previous != policy:
            logger.info(
                "update_policy_changed",
                entity_type=name,
                previous=previous.value,
                policy=policy.value,
            )
        return policy
