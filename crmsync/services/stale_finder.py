"""Stale record finder: primary keys of entities that need a resync.

For every (entity type, destination) pair this builds one ``SELECT`` of the
entity's primary key. An entity is stale when it has no sync state for the
destination, or when its state's ``last_synced_at`` is strictly older than the
most recent modification time across the entity and its declared
dependencies. Everything is evaluated by the database through correlated
subqueries; no related rows are loaded.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from sqlalchemy import DateTime, Select, and_, func, literal, or_, select
from sqlalchemy import inspect as sa_inspect

from crmsync.destinations.dependencies import (
    BelongsTo,
    Dependency,
    HasMany,
    HasOne,
    PolymorphicBelongsTo,
    Through,
)
from crmsync.exceptions import ConfigurationError
from crmsync.models.sync_state import SyncState
from crmsync.services.datetime_service import EPOCH

if TYPE_CHECKING:
    from sqlalchemy import ColumnElement, FromClause, Table
    from sqlalchemy.ext.asyncio import AsyncSession

    from crmsync.destinations.registry import DestinationRegistry

logger = logging.getLogger(__name__)

# Dialects with a scalar multi-argument GREATEST(). Elsewhere (SQLite) the
# multi-argument MAX() is scalar.
_GREATEST_DIALECTS = frozenset({"postgresql", "mysql", "mariadb", "oracle"})

StaleQueries = dict[type, dict[str, Select[Any]]]


def epoch_literal() -> ColumnElement[Any]:
    """Epoch sentinel bound with the DateTime type so each backend compares it natively."""
    return literal(EPOCH, type_=DateTime(timezone=True))


def greatest(parts: list[ColumnElement[Any]], dialect_name: str) -> ColumnElement[Any]:
    """Combine timestamp expressions with the dialect's greatest-of function.

    A single expression is returned as is: SQLite would read ``MAX(x)`` as an
    aggregate.
    """
    if not parts:
        msg = "greatest() needs at least one expression"
        raise ValueError(msg)
    if len(parts) == 1:
        return parts[0]
    if dialect_name in _GREATEST_DIALECTS:
        return func.greatest(*parts)
    return func.max(*parts)


def table_of(entity_type: type) -> Table:
    """Return the table a mapped class is persisted to."""
    mapper = sa_inspect(entity_type, raiseerr=False)
    if mapper is None:
        msg = f"{entity_type.__name__} is not a mapped class"
        raise ConfigurationError(msg)
    return mapper.local_table  # type: ignore[no-any-return]


def primary_key_name(table: FromClause) -> str:
    """Return the name of the (first) primary key column."""
    columns = list(table.primary_key.columns)
    if not columns:
        msg = f"Table {table.description} has no primary key"
        raise ConfigurationError(msg)
    return columns[0].key


def _column(table: FromClause, name: str) -> ColumnElement[Any]:
    column = table.c.get(name)
    if column is None:
        msg = f"Table {table.description} has no column {name!r}"
        raise ConfigurationError(msg)
    return column


class StaleRecordsFinder:
    """Build primary-key queries of stale entities per entity type and destination."""

    def __init__(self, registry: DestinationRegistry) -> None:
        self.registry = registry

    async def find(
        self,
        session: AsyncSession,
        entity_types: Iterable[type] | None = None,
        destination_name: str | None = None,
    ) -> StaleQueries:
        """Return ``{entity_type: {destination_name: select_of_primary_keys}}``.

        Entity types whose table does not exist yet are skipped, as are types
        that declared none of the requested destinations.
        """
        targets = (
            list(entity_types) if entity_types is not None else self.registry.entity_types()
        )
        dialect_name = session.get_bind().dialect.name
        queries: StaleQueries = {}

        for entity_type in targets:
            destinations = [
                name
                for name in self.registry.destinations_for(entity_type)
                if destination_name is None or name == destination_name
            ]
            if not destinations:
                continue
            if not await self._table_exists(session, table_of(entity_type)):
                logger.debug("Skipping %s: table does not exist", entity_type.__name__)
                continue

            queries[entity_type] = {
                name: await self.stale_query(session, entity_type, name, dialect_name)
                for name in destinations
            }
        return queries

    async def stale_query(
        self,
        session: AsyncSession,
        entity_type: type,
        destination_name: str,
        dialect_name: str | None = None,
    ) -> Select[Any]:
        """Build the primary-key query for one (entity type, destination) pair."""
        if dialect_name is None:
            dialect_name = session.get_bind().dialect.name
        owner = table_of(entity_type)
        pk = _column(owner, primary_key_name(owner))
        epoch = epoch_literal()

        threshold = await self.threshold_expression(
            session, entity_type, destination_name, dialect_name
        )

        state = SyncState.__table__
        onclause = and_(
            state.c.resource_type == self.registry.type_name(entity_type),
            state.c.resource_id == pk,
            state.c.destination_name == destination_name,
        )
        return (
            select(pk)
            .select_from(owner.outerjoin(state, onclause))
            .where(
                or_(
                    state.c.id.is_(None),
                    func.coalesce(state.c.last_synced_at, epoch) < threshold,
                )
            )
            .order_by(pk)
        )

    async def threshold_expression(
        self,
        session: AsyncSession,
        entity_type: type,
        destination_name: str,
        dialect_name: str,
    ) -> ColumnElement[Any]:
        """Latest modification time across the entity and its dependencies."""
        owner = table_of(entity_type)
        epoch = epoch_literal()
        parts: list[ColumnElement[Any]] = [
            func.coalesce(_column(owner, self.registry.timestamp_column), epoch)
        ]
        for dependency in self.registry.dependencies_for(entity_type, destination_name):
            parts.append(
                await self._dependency_timestamp(
                    session, entity_type, owner, dependency, dialect_name
                )
            )
        return greatest(parts, dialect_name)

    async def _dependency_timestamp(
        self,
        session: AsyncSession,
        entity_type: type,
        owner: Table,
        dependency: Dependency,
        dialect_name: str,
    ) -> ColumnElement[Any]:
        if isinstance(dependency, PolymorphicBelongsTo):
            return await self._polymorphic_belongs_to(session, owner, dependency, dialect_name)
        if isinstance(dependency, Through):
            return self._through(entity_type, owner, dependency)
        if isinstance(dependency, BelongsTo):
            return self._belongs_to(owner, dependency)
        if isinstance(dependency, (HasOne, HasMany)):
            return self._has_many(entity_type, owner, dependency)
        logger.debug(
            "Ignoring unsupported dependency %r (%s) on %s",
            dependency.name,
            type(dependency).__name__,
            entity_type.__name__,
        )
        return epoch_literal()

    def _belongs_to(self, owner: Table, dependency: BelongsTo) -> ColumnElement[Any]:
        target = table_of(dependency.target).alias()
        subquery = (
            select(_column(target, self.registry.timestamp_column))
            .where(
                _column(target, primary_key_name(target))
                == _column(owner, dependency.foreign_key)
            )
            .limit(1)
            .correlate(owner)
            .scalar_subquery()
        )
        return func.coalesce(subquery, epoch_literal())

    def _has_many(
        self, entity_type: type, owner: Table, dependency: HasOne | HasMany
    ) -> ColumnElement[Any]:
        target = table_of(dependency.target).alias()
        predicates = [
            _column(target, dependency.foreign_key) == _column(owner, primary_key_name(owner))
        ]
        if dependency.discriminator:
            predicates.append(
                _column(target, dependency.discriminator) == self.registry.type_name(entity_type)
            )
        subquery = (
            select(func.max(_column(target, self.registry.timestamp_column)))
            .where(*predicates)
            .correlate(owner)
            .scalar_subquery()
        )
        return func.coalesce(subquery, epoch_literal())

    def _through(self, entity_type: type, owner: Table, dependency: Through) -> ColumnElement[Any]:
        through = table_of(dependency.through).alias()
        target = table_of(dependency.target).alias()

        predicates = [
            _column(through, dependency.through_foreign_key)
            == _column(owner, primary_key_name(owner))
        ]
        if dependency.through_discriminator:
            predicates.append(
                _column(through, dependency.through_discriminator)
                == self.registry.type_name(entity_type)
            )
        join_on = _column(target, primary_key_name(target)) == _column(
            through, dependency.source_foreign_key
        )
        subquery = (
            select(func.max(_column(target, self.registry.timestamp_column)))
            .select_from(through.join(target, join_on))
            .where(*predicates)
            .correlate(owner)
            .scalar_subquery()
        )
        return func.coalesce(subquery, epoch_literal())

    async def _polymorphic_belongs_to(
        self,
        session: AsyncSession,
        owner: Table,
        dependency: PolymorphicBelongsTo,
        dialect_name: str,
    ) -> ColumnElement[Any]:
        discriminator = _column(owner, dependency.discriminator)
        foreign_key = _column(owner, dependency.foreign_key)

        result = await session.execute(select(discriminator).distinct())
        type_names = sorted({name for name in result.scalars() if name})

        parts: list[ColumnElement[Any]] = []
        for type_name in type_names:
            target_type = self.registry.resolve_type(type_name)
            target_mapper = (
                sa_inspect(target_type, raiseerr=False) if target_type is not None else None
            )
            if target_mapper is None:
                logger.debug(
                    "Skipping unresolvable type %r for %s.%s",
                    type_name,
                    owner.name,
                    dependency.discriminator,
                )
                continue
            target = target_mapper.local_table.alias()
            subquery = (
                select(_column(target, self.registry.timestamp_column))
                .where(
                    discriminator == type_name,
                    _column(target, primary_key_name(target)) == foreign_key,
                )
                .limit(1)
                .correlate(owner)
                .scalar_subquery()
            )
            parts.append(func.coalesce(subquery, epoch_literal()))

        if not parts:
            return epoch_literal()
        return greatest(parts, dialect_name)

    @staticmethod
    async def _table_exists(session: AsyncSession, table: Table) -> bool:
        connection = await session.connection()
        return await connection.run_sync(
            lambda sync_conn: sa_inspect(sync_conn).has_table(table.name, schema=table.schema)
        )
