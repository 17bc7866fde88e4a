"""Destination registry: destinations, entity declarations and type names.

A single :class:`DestinationRegistry` is built while the host application
boots and is passed to every service. Registration is single-writer: it is not
safe to mutate the registry from several threads at runtime.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, event
from sqlalchemy import inspect as sa_inspect

from crmsync.destinations.dependencies import Dependency
from crmsync.exceptions import ConfigurationError
from crmsync.models.sync_state import SyncState
from crmsync.services.digest_service import DigestStrategy, stable_digest

if TYPE_CHECKING:
    from sqlalchemy.engine import Connection
    from sqlalchemy.orm import Mapper

    from crmsync.destinations.base import AdapterFactory, DestinationAdapter
    from crmsync.jobs.sync_job import Enqueuer
    from crmsync.serializers.base import BaseSerializer

logger = logging.getLogger(__name__)

Guard = Callable[[Any], bool]


@dataclass
class DestinationRegistration:
    """A registered destination: how to build its adapter plus default options."""

    name: str
    adapter: AdapterFactory
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class EntityDeclaration:
    """How one entity type is mirrored to one destination."""

    entity_type: type
    destination_name: str
    serializer: type[BaseSerializer]
    object_type: str
    id_property: str | None = None
    dependencies: tuple[Dependency | str, ...] = ()
    guard: Guard | None = None
    job: Enqueuer | None = None
    # Filled in when the destination is registered.
    adapter: AdapterFactory | None = None
    default_job: Enqueuer | None = None

    @property
    def resolved_job(self) -> Enqueuer | None:
        """Job used for asynchronous syncs: the explicit one, else the destination's."""
        return self.job if self.job is not None else self.default_job

    def allows(self, entity: Any) -> bool:
        """Evaluate the guard predicate for *entity*."""
        if self.guard is None:
            return True
        return bool(self.guard(entity))

    def build_adapter(self) -> DestinationAdapter:
        """Instantiate this destination's adapter."""
        if self.adapter is None:
            msg = f"Destination {self.destination_name!r} is not registered"
            raise ConfigurationError(msg)
        return self.adapter()

    def build_payload(self, entity: Any) -> dict[str, Any]:
        """Serialize *entity* with the declared serializer."""
        return self.serializer(entity).as_payload()


class DestinationRegistry:
    """Registry of destinations and of the entity types mirrored to them."""

    def __init__(
        self,
        *,
        digest_strategy: DigestStrategy = stable_digest,
        timestamp_column: str = "updated_at",
    ) -> None:
        self.digest_strategy = digest_strategy
        self.timestamp_column = timestamp_column
        self._destinations: dict[str, DestinationRegistration] = {}
        self._declarations: dict[type, dict[str, EntityDeclaration]] = {}
        self._associations: dict[type, dict[str, Dependency]] = {}
        self._types_by_name: dict[str, type] = {}
        self._names_by_type: dict[type, str] = {}
        self._cascading: set[type] = set()

    # ── Destinations ─────────────────────────────────

    def register_destination(
        self,
        name: str,
        adapter: AdapterFactory,
        options: dict[str, Any] | None = None,
    ) -> DestinationRegistration:
        """Register a destination and backfill it onto existing declarations."""
        registration = DestinationRegistration(name=name, adapter=adapter, options=options or {})
        self._destinations[name] = registration
        for per_destination in self._declarations.values():
            declaration = per_destination.get(name)
            if declaration is not None:
                self._install(declaration, registration)
        logger.debug("Registered destination %s", name)
        return registration

    def destination(self, name: str) -> DestinationRegistration:
        """Return a registered destination or raise ConfigurationError."""
        registration = self._destinations.get(name)
        if registration is None:
            msg = f"Unknown destination: {name!r}. Available: {list(self._destinations)}"
            raise ConfigurationError(msg)
        return registration

    def destination_names(self) -> list[str]:
        """Return the registered destination names."""
        return list(self._destinations)

    # ── Entity types ─────────────────────────────────

    def declare(
        self,
        entity_type: type,
        destination_name: str,
        *,
        serializer: type[BaseSerializer],
        object_type: str,
        id_property: str | None = None,
        dependencies: Iterable[Dependency | str] = (),
        sync_if: Guard | None = None,
        job: Enqueuer | None = None,
        name: str | None = None,
    ) -> EntityDeclaration:
        """Declare that *entity_type* is mirrored to *destination_name*.

        The destination may be registered before or after this call.
        """
        if not object_type:
            msg = f"object_type is required for {entity_type.__name__} on {destination_name!r}"
            raise ConfigurationError(msg)

        type_name = name or self._names_by_type.get(entity_type) or entity_type.__name__
        self.register_type(type_name, entity_type)
        declaration = EntityDeclaration(
            entity_type=entity_type,
            destination_name=destination_name,
            serializer=serializer,
            object_type=object_type,
            id_property=id_property,
            dependencies=tuple(dependencies),
            guard=sync_if,
            job=job,
        )
        self._declarations.setdefault(entity_type, {})[destination_name] = declaration

        registration = self._destinations.get(destination_name)
        if registration is not None:
            self._install(declaration, registration)
        self._install_state_cascade(entity_type)
        return declaration

    def define_associations(self, entity_type: type, *dependencies: Dependency) -> None:
        """Name dependency descriptors so declarations can refer to them by name."""
        named = self._associations.setdefault(entity_type, {})
        for dependency in dependencies:
            named[dependency.name] = dependency

    def register_type(self, name: str, entity_type: type) -> None:
        """Map a stored type name to a mapped class (for polymorphic columns)."""
        previous = self._names_by_type.get(entity_type)
        if previous is not None and previous != name:
            self._types_by_name.pop(previous, None)
        self._types_by_name[name] = entity_type
        self._names_by_type[entity_type] = name

    def type_name(self, entity_type: type) -> str:
        """Return the name stored in ``resource_type`` for *entity_type*."""
        return self._names_by_type.get(entity_type, entity_type.__name__)

    def resolve_type(self, name: str | None) -> type | None:
        """Return the class registered under *name*, or None."""
        if not name:
            return None
        return self._types_by_name.get(name)

    def entity_types(self) -> list[type]:
        """Return entity types that declared at least one destination."""
        return [t for t, per_destination in self._declarations.items() if per_destination]

    def destinations_for(self, entity_type: type) -> list[str]:
        """Return the destination names declared by *entity_type*."""
        return list(self._declarations.get(entity_type, {}))

    def is_declared(self, entity_type: type, destination_name: str) -> bool:
        """Return True when *entity_type* declared *destination_name*."""
        return destination_name in self._declarations.get(entity_type, {})

    def config_for(self, entity_type: type, destination_name: str) -> EntityDeclaration:
        """Return the declaration for a pair, failing fast when it is missing."""
        declaration = self._declarations.get(entity_type, {}).get(destination_name)
        if declaration is None:
            msg = (
                f"{self.type_name(entity_type)} is not configured for "
                f"destination {destination_name!r}"
            )
            raise ConfigurationError(msg)
        if destination_name not in self._destinations:
            msg = (
                f"Unknown destination: {destination_name!r}. "
                f"Available: {list(self._destinations)}"
            )
            raise ConfigurationError(msg)
        return declaration

    def dependencies_for(self, entity_type: type, destination_name: str) -> list[Dependency]:
        """Resolve the declared dependency list into descriptors, skipping unknown names."""
        declaration = self.config_for(entity_type, destination_name)
        named = self._associations.get(entity_type, {})
        resolved: list[Dependency] = []
        for entry in declaration.dependencies:
            if isinstance(entry, Dependency):
                resolved.append(entry)
                continue
            dependency = named.get(entry)
            if dependency is None:
                logger.debug(
                    "Skipping undefined association %r on %s",
                    entry,
                    self.type_name(entity_type),
                )
                continue
            resolved.append(dependency)
        return resolved

    # ── Internals ────────────────────────────────────

    @staticmethod
    def _install(declaration: EntityDeclaration, registration: DestinationRegistration) -> None:
        declaration.adapter = registration.adapter
        declaration.default_job = registration.options.get("job")

    def _install_state_cascade(self, entity_type: type) -> None:
        if entity_type in self._cascading:
            return
        event.listen(entity_type, "after_delete", self._delete_sync_states)
        self._cascading.add(entity_type)

    def _delete_sync_states(self, mapper: Mapper[Any], connection: Connection, target: Any) -> None:
        identity = sa_inspect(target).identity
        if not identity:
            return
        connection.execute(
            delete(SyncState.__table__).where(
                SyncState.__table__.c.resource_type == self.type_name(type(target)),
                SyncState.__table__.c.resource_id == identity[0],
            )
        )
