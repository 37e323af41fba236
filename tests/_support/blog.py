"""
Blog models used across the ORM and CLI tests.

Discovered storage::

    Author.posts   <-> Post.author      Posts.AuthorId
    Author.profile <-> Profile.author   Authors.ProfileId
    Post.tags      <-> Tag.posts        PostsToTags(PostId, TagId)

``Memo`` has no relations and records every lifecycle hook it runs.
"""

from __future__ import annotations

from typing import Any, ClassVar

from keystone import Model, field


class Author(Model):
    name: str = field(required=True)
    email: str | None = None
    posts: list[Post]
    profile: Profile | None = None


class Profile(Model):
    bio: str = ""
    author: Author | None = None


class Post(Model):
    title: str = field(required=True, min_length=3)
    views: int = 0
    draft: bool = False
    author: Author | None = None
    tags: list[Tag]


class Tag(Model):
    label: str = field(required=True)
    posts: list[Post]


def _record(name: str) -> Any:
    def hook(self: Memo) -> None:
        type(self).calls.append(name)

    hook.__name__ = name
    return hook


class Memo(Model):
    text: str = ""
    calls: ClassVar[list[str]] = []

    before_save = _record("before_save")
    after_save = _record("after_save")
    before_insert = _record("before_insert")
    after_insert = _record("after_insert")
    before_update = _record("before_update")
    after_update = _record("after_update")
    before_delete = _record("before_delete")
    after_delete = _record("after_delete")
    before_restore = _record("before_restore")
    after_restore = _record("after_restore")


BLOG_MODELS = [Author, Profile, Post, Tag, Memo]

_TIMESTAMPS = '"CreatedAt" TEXT, "ModifiedAt" TEXT, "DeletedAt" TEXT'

SCHEMA = f"""
CREATE TABLE "Authors" (
    "Id" INTEGER PRIMARY KEY AUTOINCREMENT, {_TIMESTAMPS},
    "Name" TEXT NOT NULL,
    "Email" TEXT,
    "ProfileId" INTEGER
);
CREATE TABLE "Profiles" (
    "Id" INTEGER PRIMARY KEY AUTOINCREMENT, {_TIMESTAMPS},
    "Bio" TEXT
);
CREATE TABLE "Posts" (
    "Id" INTEGER PRIMARY KEY AUTOINCREMENT, {_TIMESTAMPS},
    "Title" TEXT NOT NULL,
    "Views" INTEGER NOT NULL DEFAULT 0,
    "Draft" INTEGER NOT NULL DEFAULT 0,
    "AuthorId" INTEGER
);
CREATE TABLE "Tags" (
    "Id" INTEGER PRIMARY KEY AUTOINCREMENT, {_TIMESTAMPS},
    "Label" TEXT NOT NULL
);
CREATE TABLE "PostsToTags" (
    "PostId" INTEGER NOT NULL,
    "TagId" INTEGER NOT NULL,
    PRIMARY KEY ("PostId", "TagId")
);
CREATE TABLE "Memos" (
    "Id" INTEGER PRIMARY KEY AUTOINCREMENT, {_TIMESTAMPS},
    "Text" TEXT
)
"""


def create_schema(context: Any) -> None:
    """Create the blog tables through the context's executor."""
    for statement in SCHEMA.split(";"):
        if statement.strip():
            context.executor.execute(statement)
