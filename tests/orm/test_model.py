"""
Tests for the Model base class.

Tests verify:
- Construction, defaults and dirty tracking
- Validation rules
- Lifecycle hook order
- Dictionary / JSON conversion
- refresh()
"""

from __future__ import annotations

import json
from datetime import datetime

import pytest

from _support.blog import Author, Memo, Post, Tag
from keystone.core.errors import ModelValidationError, PersistenceError
from keystone.orm.protocols import Entity


class TestConstruction:
    def test_defaults(self):
        post = Post(title="Hello")
        assert post.id == 0
        assert post.views == 0
        assert post.draft is False
        assert post.author is None
        assert post.tags == []
        assert isinstance(post.created_at, datetime)
        assert post.deleted_at is None
        assert not post.is_persisted

    def test_new_instances_are_clean(self):
        assert not Post(title="Hello", views=3).is_dirty

    def test_unknown_property(self):
        with pytest.raises(TypeError, match="nope"):
            Post(title="Hello", nope=1)

    def test_implements_entity_protocol(self):
        assert isinstance(Post(title="Hello"), Entity)

    def test_default_lists_are_not_shared(self):
        first, second = Tag(label="a"), Tag(label="b")
        first.posts.append(Post(title="Hello"))
        assert second.posts == []


class TestDirtyTracking:
    def test_assignment_marks_dirty(self):
        post = Post(title="Hello")
        post.title = "Changed"
        assert post.modified_properties == {"title"}

    def test_assigning_back_clears(self):
        post = Post(title="Hello")
        post.title = "Changed"
        post.title = "Hello"
        assert not post.is_dirty

    def test_collection_mutation_marks_dirty(self):
        post = Post(title="Hello")
        post.tags.append(Tag(label="orm"))
        assert post.modified_properties == {"tags"}

    def test_reference_assignment(self):
        post = Post(title="Hello")
        post.author = Author(name="Ada")
        assert "author" in post.modified_properties

    def test_repr(self):
        post = Post(title="Hello")
        post.views = 2
        assert repr(post) == "<Post id=0 dirty=['views']>"

    def test_unknown_attribute(self):
        with pytest.raises(AttributeError):
            Post(title="Hello").get_property("nope")


class TestValidation:
    def test_valid(self):
        Post(title="Hello").validate()

    def test_min_length(self):
        with pytest.raises(ModelValidationError) as exc_info:
            Post(title="ab").validate()
        assert exc_info.value.errors == {"title": ["must have length >= 3"]}
        assert exc_info.value.context.model == "Post"

    def test_required(self):
        with pytest.raises(ModelValidationError) as exc_info:
            Author().validate()
        assert exc_info.value.errors == {"name": ["is required"]}

    def test_invalid_entities_are_not_saved(self, context):
        with pytest.raises(ModelValidationError):
            Author(name="").save()
        assert Author.query().count() == 0


class TestHooks:
    @pytest.fixture(autouse=True)
    def _clear_calls(self):
        Memo.calls.clear()
        yield
        Memo.calls.clear()

    def test_insert(self, context):
        Memo(text="a").save()
        assert Memo.calls == ["before_save", "before_insert", "after_insert", "after_save"]

    def test_update(self, context):
        memo = Memo(text="a").save()
        Memo.calls.clear()
        memo.text = "b"
        memo.save()
        assert Memo.calls == ["before_save", "before_update", "after_update", "after_save"]

    def test_clean_save_skips_update_hooks_after_the_write(self, context):
        memo = Memo(text="a").save()
        Memo.calls.clear()
        memo.save()
        assert Memo.calls == ["before_save", "before_update", "after_save"]

    def test_delete_and_restore(self, context):
        memo = Memo(text="a").save()
        Memo.calls.clear()
        memo.delete()
        memo.restore()
        assert Memo.calls == ["before_delete", "after_delete", "before_restore", "after_restore"]


class TestConversion:
    def test_to_dict(self):
        post = Post(title="Hello", views=2)
        data = post.to_dict()
        assert data["title"] == "Hello"
        assert data["views"] == 2
        assert data["author"] is None
        assert data["tags"] == []

    def test_to_dict_without_relations(self):
        data = Post(title="Hello").to_dict(relations=False)
        assert "tags" not in data
        assert "author" not in data

    def test_cycles_become_references(self):
        author = Author(name="Ada", id=4)
        post = Post(title="Hello", author=author)
        author.posts.append(post)
        data = author.to_dict()
        assert data["posts"][0]["author"] == {"id": 4}

    def test_from_dict(self):
        author = Author.from_dict({"name": "Ada", "posts": [{"title": "Hello", "views": "3"}]})
        assert author.name == "Ada"
        assert author.posts[0].title == "Hello"
        assert author.posts[0].views == 3
        assert author.profile is None
        assert not author.is_dirty

    def test_json_round_trip(self):
        post = Post(title="Hello", views=2)
        text = post.to_json()
        assert json.loads(text)["title"] == "Hello"
        restored = Post.from_json(text)
        assert restored.views == 2
        assert restored.created_at == post.created_at


class TestRefresh:
    def test_discards_local_changes(self, context):
        post = Post.create(title="Hello")
        post.title = "Local"
        post.refresh()
        assert post.title == "Hello"
        assert not post.is_dirty

    def test_picks_up_external_writes(self, context):
        post = Post.create(title="Hello")
        context.executor.execute('UPDATE "Posts" SET "Views" = 42')
        assert post.refresh().views == 42

    def test_unsaved(self, context):
        with pytest.raises(PersistenceError):
            Post(title="Hello").refresh()

    def test_deleted_row(self, context):
        post = Post.create(title="Hello")
        post.delete(hard=True)
        with pytest.raises(PersistenceError):
            post.refresh()
