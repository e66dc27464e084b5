"""Tests for model definition and metadata."""

from __future__ import annotations

import threading
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any

import pytest

from popkit import (
    AssociationKind,
    Base,
    ForeignKey,
    Mapped,
    MetadataError,
    MissingPrimaryKeyError,
    UnknownAssociationError,
    belongs_to,
    describe,
    has_many,
    has_one,
    many_to_many,
    mapped_column,
    relationship,
)
from popkit._cache import KeyedCache
from popkit.naming import foreign_key_for, pluralize, table_alias, table_name_for, to_snake


class MdOwner(Base):
    __tablename__ = "md_owners"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_name: Mapped[str] = mapped_column(name="login")
    email: Mapped[str]
    age: Mapped[int | None] = mapped_column(nullable=True)
    secret: Mapped[str] = mapped_column(readable=False)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    pets: Mapped[list[MdPet]] = has_many(order_by="md_pets.name asc")
    profile: Mapped[MdProfile | None] = has_one()
    clubs: Mapped[list[MdClub]] = many_to_many("md_owners_clubs")


class MdPet(Base):
    __tablename__ = "md_pets"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str]
    md_owner_id: Mapped[int | None] = mapped_column(nullable=True)

    md_owner: Mapped[MdOwner | None] = relationship()


class MdProfile(Base):
    __tablename__ = "md_profiles"

    id: Mapped[int] = mapped_column(primary_key=True)
    keeper: Mapped[int] = mapped_column(ForeignKey("md_owners.id"))


class MdClub(Base):
    __tablename__ = "md_clubs"

    id: Mapped[int] = mapped_column(primary_key=True)
    title: Mapped[str]


class MdTicket(Base):
    __tablename__ = "md_tickets"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True)
    holder_id: Mapped[int] = mapped_column(nullable=True)

    holder: Mapped[MdOwner | None] = belongs_to("MdOwner", foreign_key="holder_id")


class MdClient(Base):
    __tablename__ = "md_clients"

    name: Mapped[str]


class MdPrefixed(Base):
    id: Mapped[str] = mapped_column(primary_key=True)

    @classmethod
    def table_name(cls, ctx: Mapping[str, Any]) -> str:
        return f"prefix_{ctx['prefix']}_table"


class Enemy(Base):
    id: Mapped[int] = mapped_column(primary_key=True)


def test_model_tablename():
    """Test that __tablename__ is set, defaulting to the pluralized class name."""
    assert MdOwner.__tablename__ == "md_owners"
    assert Enemy.__tablename__ == "enemies"
    assert MdPrefixed.__tablename__ == "md_prefixeds"


def test_model_columns():
    """Test that columns are correctly parsed."""
    assert list(MdOwner.__columns__) == ["id", "user_name", "email", "age", "secret", "created_at"]
    assert MdOwner.__column_names__["user_name"] == "login"
    assert MdOwner.__columns__["age"].nullable is True
    assert MdOwner.__columns__["age"].python_type is int


def test_model_primary_key():
    """Test that primary key is detected and int keys autoincrement."""
    assert MdOwner.__primary_key__ == "id"
    assert MdOwner.__columns__["id"].autoincrement is True
    assert MdTicket.__columns__["id"].autoincrement is False
    assert MdTicket.__columns__["id"].generates_uuid is True
    assert MdClient.__primary_key__ is None


def test_model_instantiation():
    """Test creating model instances."""
    owner = MdOwner(user_name="alice", email="alice@example.com")
    assert owner.user_name == "alice"
    assert owner.age is None


def test_model_unknown_keyword():
    """Test that unknown keywords are rejected."""
    with pytest.raises(TypeError):
        MdOwner(nickname="x")


def test_unloaded_association_raises():
    """Test that reading an association before loading it fails clearly."""
    owner = MdOwner(user_name="alice", email="a@example.com")
    with pytest.raises(AttributeError, match="not loaded"):
        owner.pets


def test_assigned_association_is_loaded():
    """Test that assigning an association marks it as loaded."""
    pet = MdPet(name="Rex")
    owner = MdOwner(user_name="bob", email="b@example.com", pets=[pet])
    assert owner.is_loaded("pets")
    assert owner.pets == [pet]
    assert "pets" not in owner.__dict__


def test_from_row_maps_column_names():
    """Test that result rows are mapped through column names."""
    owner = MdOwner._from_row({"id": 3, "login": "carol", "email": "c@example.com", "extra": 1})
    assert owner.id == 3
    assert owner.user_name == "carol"
    assert owner.age is None


def test_from_row_converts_text_values():
    """Test that text and integer values are converted to the declared types."""
    key = uuid.uuid4()
    ticket = MdTicket._from_row({"id": str(key), "holder_id": 4})
    assert ticket.id == key

    owner = MdOwner._from_row({"id": 1, "created_at": "2026-03-01T09:30:00+00:00"})
    assert owner.created_at == datetime.fromisoformat("2026-03-01T09:30:00+00:00")

    already = datetime(2026, 1, 1)
    owner = MdOwner._from_row({"id": 1, "created_at": already, "age": None})
    assert owner.created_at is already
    assert owner.age is None


def test_model_to_dict():
    """Test converting model to dictionary."""
    owner = MdOwner(user_name="alice", email="alice@example.com", age=30)
    d = owner.to_dict()
    assert d["user_name"] == "alice"
    assert d["age"] == 30


def test_model_repr():
    """Test model string representation."""
    owner = MdOwner(user_name="alice", email="alice@example.com")
    owner.id = 1
    assert repr(owner) == "<MdOwner id=1>"


def test_describe_metadata():
    """Test metadata derived from a class, an instance and a list."""
    meta = describe(MdOwner)
    assert meta.table_name == "md_owners"
    assert meta.alias == "md_owners"
    assert meta.primary_keys == ("id",)
    assert meta.primary_key_column == "id"
    assert describe(MdOwner(user_name="a", email="b")) is meta
    assert describe([MdOwner(user_name="a", email="b")]) is meta


def test_describe_empty_list():
    """Test that an empty list cannot be described."""
    with pytest.raises(MetadataError):
        describe([])


def test_readable_and_writeable_columns():
    """Test column visibility for SELECT and INSERT."""
    meta = describe(MdOwner)
    assert "secret" not in [c.name for c in meta.readable_columns()]
    insert_cols = [c.name for c in meta.writeable_columns(for_insert=True)]
    assert "id" not in insert_cols
    assert "secret" in insert_cols
    ticket_cols = [c.name for c in describe(MdTicket).writeable_columns(for_insert=True)]
    assert "id" in ticket_cols


def test_missing_primary_key():
    """Test the error for a model without a primary key."""
    meta = describe(MdClient)
    with pytest.raises(MissingPrimaryKeyError, match="model MdClient is missing required field id"):
        meta.primary_key


def test_associations_resolved():
    """Test association kinds and keys are inferred."""
    meta = describe(MdOwner)

    pets = meta.association("pets")
    assert pets.kind is AssociationKind.HAS_MANY
    assert pets.target_type is MdPet
    assert pets.foreign_key_column == "md_owner_id"
    assert pets.order_by == "md_pets.name asc"

    profile = meta.association("profile")
    assert profile.kind is AssociationKind.HAS_ONE
    assert profile.foreign_key_column == "keeper"

    clubs = meta.association("clubs")
    assert clubs.kind is AssociationKind.MANY_TO_MANY
    assert clubs.through_table == "md_owners_clubs"
    assert clubs.through_owner_column == "md_owner_id"
    assert clubs.through_target_column == "md_club_id"


def test_belongs_to_inferred():
    """Test that a matching foreign key column makes an association belongs-to."""
    owner = describe(MdPet).association("md_owner")
    assert owner.kind is AssociationKind.BELONGS_TO
    assert owner.owner_key_attr == "md_owner_id"
    assert owner.target_key_column == "id"

    holder = describe(MdTicket).association("holder")
    assert holder.kind is AssociationKind.BELONGS_TO
    assert holder.foreign_key_column == "holder_id"


def test_unknown_association():
    """Test the error for an association that does not exist."""
    with pytest.raises(
        UnknownAssociationError,
        match="could not retrieve associations: field toys does not exist in model MdOwner",
    ):
        describe(MdOwner).association("toys")


def test_context_table_name():
    """Test that table names may depend on the context."""
    meta_a = describe(MdPrefixed, {"prefix": "a"})
    meta_b = describe(MdPrefixed, {"prefix": "b"})
    assert meta_a.table_name == "prefix_a_table"
    assert meta_b.table_name == "prefix_b_table"
    assert describe(MdPrefixed, {"prefix": "a"}) is meta_a


def test_context_table_name_error_propagates():
    """Test that a failing table_name hook surfaces its own error."""
    with pytest.raises(KeyError):
        describe(MdPrefixed, {})


def test_schema_qualified_alias():
    """Test that dots in table names are folded in the alias."""
    assert table_alias("family.members") == "family_members"


def test_naming_helpers():
    """Test name folding."""
    assert to_snake("UsersAddress") == "users_address"
    assert to_snake("HTTPHeader") == "http_header"
    assert pluralize("person") == "people"
    assert pluralize("category") == "categories"
    assert pluralize("address") == "addresses"
    assert table_name_for("CourseCode") == "course_codes"
    assert foreign_key_for("UserAddress") == "user_address_id"


def test_describe_is_cached():
    """Test that metadata is derived once per model and table."""
    assert describe(MdOwner) is describe(MdOwner())
    assert describe([MdOwner()]) is describe(MdOwner)


def test_keyed_cache_computes_once_per_key():
    """Test that concurrent callers share one computation per key."""
    cache: KeyedCache[str, int] = KeyedCache()
    calls: list[str] = []
    barrier = threading.Barrier(8)

    def compute(key: str) -> int:
        calls.append(key)
        return len(key)

    def worker(key: str) -> None:
        barrier.wait()
        assert cache.get_or_compute(key, lambda: compute(key)) == len(key)

    threads = [threading.Thread(target=worker, args=("ab" if i % 2 else "abc",)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(calls) == ["ab", "abc"]
    assert len(cache) == 2
    assert "ab" in cache
    cache.clear()
    assert len(cache) == 0
