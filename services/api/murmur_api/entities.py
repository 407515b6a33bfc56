from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar, Literal, Union
from uuid import uuid4


EntityKind = Literal["user", "post", "comment"]
ENTITY_KINDS: tuple[EntityKind, ...] = ("user", "post", "comment")


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


@dataclass
class User:
    kind: ClassVar[EntityKind] = "user"

    id: str
    username: str
    email: str
    full_name: str
    avatar_url: str | None = None
    followers: set[str] = field(default_factory=set)
    following: set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Post:
    kind: ClassVar[EntityKind] = "post"

    id: str
    owner_id: str
    message: str
    likes: set[str] = field(default_factory=set)
    # Ordered: comment ids in insertion order.
    comments: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Comment:
    kind: ClassVar[EntityKind] = "comment"

    id: str
    post_id: str
    owner_id: str
    text: str
    likes: set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


Entity = Union[User, Post, Comment]

ENTITY_TYPES: dict[EntityKind, type] = {"user": User, "post": Post, "comment": Comment}


def clone_entity(entity: Entity) -> Entity:
    return copy.deepcopy(entity)


def matches_filters(entity: Entity, filters: dict[str, Any]) -> bool:
    """Equality on scalar fields; membership on set/list fields."""
    for name, expected in filters.items():
        if not hasattr(entity, name):
            raise ValueError(f"{entity.kind} has no field {name!r}")
        actual = getattr(entity, name)
        if isinstance(actual, (set, frozenset, list, tuple)):
            if expected not in actual:
                return False
        elif actual != expected:
            return False
    return True
