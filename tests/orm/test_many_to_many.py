"""Tests for many-to-many pivot maintenance."""

from __future__ import annotations

import pytest

from _support.blog import Post, Tag


def pivot_rows(context):
    return [
        (row["PostId"], row["TagId"])
        for row in context.executor.rows('SELECT * FROM "PostsToTags" ORDER BY "PostId", "TagId"')
    ]


@pytest.fixture
def tagged(context):
    orm, sql, python = Tag(label="orm"), Tag(label="sql"), Tag(label="python")
    post = Post(title="Hello", tags=[orm, sql]).save()
    python.save()
    return post, orm, sql, python


class TestPivotWrites:
    def test_new_graph_inserts_pairs(self, context, tagged):
        post, orm, sql, _ = tagged
        assert pivot_rows(context) == [(post.id, orm.id), (post.id, sql.id)]

    def test_unsaved_member_of_loaded_collection_is_linked(self, context):
        saved = Post.create(title="Hello")
        post = Post.from_dict({"id": saved.id, "title": "Hello", "tags": [{"label": "orm"}]})
        post.save()
        (tag,) = post.tags
        assert tag.id
        assert pivot_rows(context) == [(saved.id, tag.id)]

    def test_pivot_insert_is_guarded(self, context, tagged, statements):
        post, _, _, python = tagged
        post.tags.append(python)
        post.save()
        (insert,) = statements
        assert insert.startswith('INSERT INTO "PostsToTags" ("PostId", "TagId")\nSELECT :p3, :p4')
        assert "WHERE NOT EXISTS (SELECT 1" in insert

    def test_only_the_delta_is_written(self, context, tagged, statements):
        post, orm, sql, python = tagged
        loaded = Post.find(post.id)
        tags = loaded.tags
        extra = Tag.find(python.id)
        statements.clear()
        tags.remove(next(t for t in tags if t.id == orm.id))
        tags.append(extra)
        loaded.save()
        assert [s.split(" ", 2)[:2] for s in statements] == [["INSERT", "INTO"], ["DELETE", "FROM"]]
        assert pivot_rows(context) == sorted([(post.id, sql.id), (post.id, python.id)])

    def test_unchanged_collection_writes_nothing(self, context, tagged, statements):
        loaded = Post.find(tagged[0].id)
        _ = loaded.tags
        statements.clear()
        loaded.save()
        assert statements == []

    def test_clear(self, context, tagged):
        post = tagged[0]
        post.tags.clear()
        post.save()
        assert pivot_rows(context) == []

    def test_saving_from_the_second_side(self, context, tagged):
        post, _, _, python = tagged
        python.posts.append(post)
        python.save()
        assert (post.id, python.id) in pivot_rows(context)

    def test_mirrored_collections_write_one_pair(self, context):
        post, tag = Post(title="Hello"), Tag(label="orm")
        post.tags.append(tag)
        tag.posts.append(post)
        post.save()
        assert pivot_rows(context) == [(post.id, tag.id)]

    def test_existing_pair_is_not_duplicated(self, context, tagged):
        post, _, _, python = tagged
        context.executor.execute(
            'INSERT INTO "PostsToTags" ("PostId", "TagId") VALUES (:p0, :p1)', {"p0": post.id, "p1": python.id}
        )
        post.tags.append(python)
        post.save()
        assert pivot_rows(context).count((post.id, python.id)) == 1


class TestPivotReads:
    def test_both_directions(self, context, tagged):
        post, orm, sql, _ = tagged
        assert [t.label for t in Post.find(post.id).tags] == ["orm", "sql"]
        assert [p.title for p in Tag.find(orm.id).posts] == ["Hello"]

    def test_unlinked(self, context, tagged):
        assert Tag.find(tagged[3].id).posts == []
