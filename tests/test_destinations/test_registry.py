"""Tests for the destination registry."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import func, select

from crmsync.destinations.dependencies import BelongsTo, HasMany
from crmsync.destinations.registry import DestinationRegistry
from crmsync.exceptions import ConfigurationError
from crmsync.models.sync_state import SyncState
from crmsync.services.synchronizer import Synchronizer
from tests.conftest import RecordingAdapter, RecordingEnqueuer, create_user
from tests.sample_models import Company, CompanySerializer, Note, User, UserSerializer

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession


class TestDestinations:
    def test_register_and_lookup(self) -> None:
        registry = DestinationRegistry()
        registration = registry.register_destination("hubspot", RecordingAdapter, {"job": None})
        assert registry.destination("hubspot") is registration
        assert registry.destination_names() == ["hubspot"]

    def test_unknown_destination_lists_available(self) -> None:
        registry = DestinationRegistry()
        registry.register_destination("hubspot", RecordingAdapter)
        with pytest.raises(ConfigurationError, match="hubspot"):
            registry.destination("salesforce")


class TestDeclarations:
    def test_declare_before_destination_is_backfilled(self) -> None:
        registry = DestinationRegistry()
        job = RecordingEnqueuer()
        declaration = registry.declare(
            User, "hubspot", serializer=UserSerializer, object_type="contacts"
        )
        assert declaration.adapter is None

        adapter = RecordingAdapter()
        registry.register_destination("hubspot", lambda: adapter, {"job": job})
        assert declaration.build_adapter() is adapter
        assert declaration.resolved_job is job

    def test_declare_after_destination(self) -> None:
        registry = DestinationRegistry()
        adapter = RecordingAdapter()
        registry.register_destination("hubspot", lambda: adapter)
        declaration = registry.declare(
            User, "hubspot", serializer=UserSerializer, object_type="contacts"
        )
        assert declaration.build_adapter() is adapter
        assert declaration.resolved_job is None

    def test_explicit_job_wins_over_destination_default(self) -> None:
        registry = DestinationRegistry()
        default_job = RecordingEnqueuer()
        explicit_job = RecordingEnqueuer()
        registry.register_destination("hubspot", RecordingAdapter, {"job": default_job})
        declaration = registry.declare(
            User, "hubspot", serializer=UserSerializer, object_type="contacts", job=explicit_job
        )
        assert declaration.resolved_job is explicit_job

    def test_object_type_is_required(self) -> None:
        registry = DestinationRegistry()
        with pytest.raises(ConfigurationError, match="object_type"):
            registry.declare(User, "hubspot", serializer=UserSerializer, object_type="")

    def test_build_adapter_without_destination(self) -> None:
        registry = DestinationRegistry()
        declaration = registry.declare(
            User, "hubspot", serializer=UserSerializer, object_type="contacts"
        )
        with pytest.raises(ConfigurationError, match="not registered"):
            declaration.build_adapter()

    def test_guard(self) -> None:
        registry = DestinationRegistry()
        declaration = registry.declare(
            User,
            "hubspot",
            serializer=UserSerializer,
            object_type="contacts",
            sync_if=lambda user: user.email.endswith("@example.com"),
        )
        assert declaration.allows(User(email="ada@example.com"))
        assert not declaration.allows(User(email="ada@elsewhere.org"))

    def test_build_payload(self) -> None:
        registry = DestinationRegistry()
        declaration = registry.declare(
            User, "hubspot", serializer=UserSerializer, object_type="contacts"
        )
        assert declaration.build_payload(User(email="ada@example.com", name="Ada")) == {
            "email": "ada@example.com",
            "name": "Ada",
        }

    def test_config_for_undeclared_pair(self, registry: DestinationRegistry) -> None:
        with pytest.raises(ConfigurationError, match="not configured"):
            registry.config_for(Company, "hubspot")

    def test_config_for_unregistered_destination(self) -> None:
        registry = DestinationRegistry()
        registry.declare(User, "hubspot", serializer=UserSerializer, object_type="contacts")
        with pytest.raises(ConfigurationError, match="Unknown destination"):
            registry.config_for(User, "hubspot")

    def test_introspection(self, registry: DestinationRegistry) -> None:
        registry.register_destination("salesforce", RecordingAdapter)
        registry.declare(Company, "salesforce", serializer=CompanySerializer, object_type="Account")
        assert set(registry.entity_types()) == {User, Company}
        assert registry.destinations_for(User) == ["hubspot"]
        assert registry.is_declared(Company, "salesforce")
        assert not registry.is_declared(Company, "hubspot")


class TestDependencies:
    def test_named_associations_are_resolved(self) -> None:
        registry = DestinationRegistry()
        registry.register_destination("hubspot", RecordingAdapter)
        company = BelongsTo("company", target=Company, foreign_key="company_id")
        notes = HasMany("notes", target=Note, foreign_key="user_id")
        registry.define_associations(User, company, notes)
        registry.declare(
            User,
            "hubspot",
            serializer=UserSerializer,
            object_type="contacts",
            dependencies=["company", "notes"],
        )
        assert registry.dependencies_for(User, "hubspot") == [company, notes]

    def test_unknown_names_are_skipped(self) -> None:
        registry = DestinationRegistry()
        registry.register_destination("hubspot", RecordingAdapter)
        notes = HasMany("notes", target=Note, foreign_key="user_id")
        registry.declare(
            User,
            "hubspot",
            serializer=UserSerializer,
            object_type="contacts",
            dependencies=["missing", notes],
        )
        assert registry.dependencies_for(User, "hubspot") == [notes]


class TestTypeNames:
    def test_defaults_to_class_name(self) -> None:
        registry = DestinationRegistry()
        registry.declare(User, "hubspot", serializer=UserSerializer, object_type="contacts")
        assert registry.type_name(User) == "User"
        assert registry.resolve_type("User") is User

    def test_custom_name(self) -> None:
        registry = DestinationRegistry()
        registry.declare(
            User, "hubspot", serializer=UserSerializer, object_type="contacts", name="app.user"
        )
        assert registry.type_name(User) == "app.user"
        assert registry.resolve_type("app.user") is User
        assert registry.resolve_type("User") is None

    def test_register_type_renames(self) -> None:
        registry = DestinationRegistry()
        registry.register_type("Person", User)
        registry.register_type("Member", User)
        assert registry.resolve_type("Person") is None
        assert registry.resolve_type("Member") is User

    def test_resolve_unknown_or_blank(self) -> None:
        registry = DestinationRegistry()
        assert registry.resolve_type("Nope") is None
        assert registry.resolve_type("") is None
        assert registry.resolve_type(None) is None


class TestStateCascade:
    async def test_deleting_entity_removes_its_sync_states(
        self, db_session: AsyncSession, registry: DestinationRegistry
    ) -> None:
        user = await create_user(db_session)
        other = await create_user(db_session, email="grace@example.com")
        await Synchronizer.call(db_session, registry, user, "hubspot")
        await Synchronizer.call(db_session, registry, other, "hubspot")

        await db_session.delete(user)
        await db_session.commit()

        remaining = await db_session.scalars(select(SyncState.resource_id))
        assert list(remaining) == [other.id]

    async def test_cascade_only_matches_own_type(
        self, db_session: AsyncSession, registry: DestinationRegistry
    ) -> None:
        registry.declare(Company, "hubspot", serializer=CompanySerializer, object_type="companies")
        company = Company(name="Acme")
        db_session.add(company)
        await db_session.commit()
        user = await create_user(db_session)
        assert company.id == user.id

        await Synchronizer.call(db_session, registry, company, "hubspot")
        await Synchronizer.call(db_session, registry, user, "hubspot")

        await db_session.delete(user)
        await db_session.commit()

        count = await db_session.scalar(select(func.count()).select_from(SyncState))
        assert count == 1
        state = await db_session.scalar(select(SyncState))
        assert state is not None
        assert state.resource_type == "Company"
