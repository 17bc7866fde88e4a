"""Dependency descriptors: associations whose changes make an owner stale.

Each descriptor names the tables and columns the stale finder correlates
against the owner's table. ``target`` and ``through`` are mapped classes.
``discriminator`` columns hold the owner's registered type name for
polymorphic ("as") ownership.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Dependency:
    """Base descriptor. Kinds the finder does not know contribute nothing."""

    name: str


@dataclass(frozen=True)
class BelongsTo(Dependency):
    """Owner holds ``foreign_key`` pointing at one ``target`` row."""

    target: type
    foreign_key: str


@dataclass(frozen=True)
class HasOne(Dependency):
    """One ``target`` row holds ``foreign_key`` pointing at the owner."""

    target: type
    foreign_key: str
    discriminator: str | None = None


@dataclass(frozen=True)
class HasMany(Dependency):
    """Many ``target`` rows hold ``foreign_key`` pointing at the owner."""

    target: type
    foreign_key: str
    discriminator: str | None = None


@dataclass(frozen=True)
class Through(Dependency):
    """``target`` rows reached via a join table.

    ``through_foreign_key`` on the join table points at the owner;
    ``source_foreign_key`` on the join table points at the target.
    """

    through: type
    target: type
    through_foreign_key: str
    source_foreign_key: str
    through_discriminator: str | None = None


@dataclass(frozen=True)
class PolymorphicBelongsTo(Dependency):
    """Owner holds ``foreign_key`` plus a ``discriminator`` naming the target type.

    Type names are resolved through the registry; unknown names are skipped.
    """

    foreign_key: str
    discriminator: str
