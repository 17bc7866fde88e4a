"""Host-application models and serializers used across the test suite."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from crmsync.destinations.null import NullAdapter
from crmsync.destinations.registry import DestinationRegistry
from crmsync.serializers.base import BaseSerializer
from crmsync.services.datetime_service import now_utc


class SampleBase(DeclarativeBase):
    pass


class UncreatedBase(DeclarativeBase):
    """Models whose tables are never created."""


class Company(SampleBase):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    domain: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=now_utc
    )


class User(SampleBase):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str | None] = mapped_column(String, nullable=True)
    company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id"), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=now_utc
    )


class Note(SampleBase):
    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    body: Mapped[str] = mapped_column(String, default="")
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=now_utc
    )


class Project(SampleBase):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=now_utc
    )


class Membership(SampleBase):
    __tablename__ = "memberships"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=now_utc
    )


class Photo(SampleBase):
    """Owned polymorphically: ``owner_type`` holds the owner's type name."""

    __tablename__ = "photos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_type: Mapped[str] = mapped_column(String, nullable=False)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=now_utc
    )


class Document(SampleBase):
    """Points polymorphically at a User or a Company."""

    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String, default="")
    attachable_type: Mapped[str | None] = mapped_column(String, nullable=True)
    attachable_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=now_utc
    )


class Upload(SampleBase):
    __tablename__ = "uploads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(String, default="")
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=now_utc
    )


class Linkage(SampleBase):
    """Polymorphic join table between an owner and an upload."""

    __tablename__ = "linkages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_type: Mapped[str] = mapped_column(String, nullable=False)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    upload_id: Mapped[int] = mapped_column(ForeignKey("uploads.id"), nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=now_utc
    )


class Ghost(UncreatedBase):
    __tablename__ = "ghosts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UserSerializer(BaseSerializer):
    def as_payload(self) -> dict[str, Any]:
        return {"email": self.entity.email, "name": self.entity.name}


class CompanySerializer(BaseSerializer):
    def as_payload(self) -> dict[str, Any]:
        return {"name": self.entity.name, "domain": self.entity.domain}


class DocumentSerializer(BaseSerializer):
    def as_payload(self) -> dict[str, Any]:
        return {"title": self.entity.title}


class PhotoSerializer(BaseSerializer):
    def as_payload(self) -> dict[str, Any]:
        return {"owner": f"{self.entity.owner_type}:{self.entity.owner_id}"}


class GhostSerializer(BaseSerializer):
    def as_payload(self) -> dict[str, Any]:
        return {"id": self.entity.id}


class ExplodingSerializer(BaseSerializer):
    def as_payload(self) -> dict[str, Any]:
        raise RuntimeError("serializer exploded")


def build_registry() -> DestinationRegistry:
    """Registry factory importable as ``tests.sample_models:build_registry``."""
    registry = DestinationRegistry()
    registry.register_destination("null", NullAdapter)
    registry.declare(Company, "null", serializer=CompanySerializer, object_type="companies")
    return registry


not_a_registry = object()
