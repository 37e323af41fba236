"""Tests for Context construction, lifecycle and the current-context helpers."""

from __future__ import annotations

import sqlite3

import pytest

from _support.blog import BLOG_MODELS, Author, Post, create_schema
from keystone.core.connection import ConnectionInfo
from keystone.core.errors import ConfigError
from keystone.core.settings import KeystoneSettings
from keystone.orm.builder import SqlTable
from keystone.orm.context import Context, connect, get_context, reset_context, set_context
from keystone.orm.registry import ModelRegistry, default_registry


@pytest.fixture
def no_context():
    reset_context()
    yield
    reset_context()


class TestConstruction:
    def test_models_and_registry_are_exclusive(self):
        with pytest.raises(ConfigError):
            Context.open(models=BLOG_MODELS, registry=ModelRegistry())

    def test_private_registry_from_models(self):
        ctx = Context.open(models=[Author, Post])
        assert list(ctx.registry) == [Author, Post]
        assert ctx.registry is not default_registry
        ctx.close()

    def test_explicit_registry(self):
        registry = ModelRegistry(BLOG_MODELS)
        ctx = Context.open(registry=registry)
        assert ctx.registry is registry
        ctx.close()

    def test_default_registry(self):
        ctx = Context.open()
        assert ctx.registry is default_registry
        assert Author in ctx.registry
        ctx.close()

    def test_unknown_backend(self):
        info = ConnectionInfo(backend="oracle", persistent=True, url="oracle://db")
        with pytest.raises(ConfigError):
            Context(sqlite3.connect(":memory:"), info=info)

    def test_repr(self, context):
        assert repr(context) == "Context(sqlite, dialect=sqlite, models=5)"


class TestSettings:
    def test_from_settings(self):
        settings = KeystoneSettings(database_url=":memory:", schema_name="app", trace_sql=True, autocommit=False)
        ctx = Context.from_settings(settings)
        assert ctx.schema == "app"
        assert ctx.executor.trace is True
        assert ctx.executor.autocommit is False
        assert ctx.info.backend == "sqlite"
        ctx.close()

    def test_keyword_arguments_win(self):
        settings = KeystoneSettings(database_url=":memory:", trace_sql=True)
        ctx = Context.from_settings(settings, trace=False)
        assert ctx.executor.trace is False
        ctx.close()

    def test_schema_qualifies_tables(self):
        ctx = Context.from_settings(KeystoneSettings(schema_name="app"), models=BLOG_MODELS)
        assert ctx.table(Post) == SqlTable("Posts", "app")
        assert ctx.qb().select("*").from_("Posts").sql == 'SELECT *\nFROM "app"."Posts"'
        ctx.close()


class TestLifecycle:
    def test_init_discovers_relations(self, context):
        assert context.init() is context
        assert context.relations.for_property(Post, "author").foreign_key_column_name == "AuthorId"

    def test_reset_rediscovers(self, context):
        before = context.relations.for_property(Post, "author")
        context.reset()
        after = context.relations.for_property(Post, "author")
        assert after is not before
        assert after.foreign_key_column_name == before.foreign_key_column_name

    def test_table_name(self, context):
        assert context.table_name(Author) == "Authors"
        assert context.table(Author) == SqlTable("Authors")

    def test_query_factory(self, context):
        Author.create(name="Ada")
        assert context.query(Author).single().name == "Ada"


class TestTransaction:
    def test_commit(self, context):
        with context.transaction():
            Author(name="Ada").save()
            Author(name="Grace").save()
        assert Author.query().count() == 2

    def test_rollback(self, context):
        with pytest.raises(RuntimeError):
            with context.transaction():
                Author(name="Ada").save()
                raise RuntimeError("boom")
        assert Author.query().count() == 0

    def test_nested_blocks_join_the_outer_one(self, context):
        with pytest.raises(RuntimeError):
            with context.transaction():
                with context.transaction():
                    Author(name="Ada").save()
                raise RuntimeError("boom")
        assert Author.query().count() == 0


class TestCurrentContext:
    def test_none_active(self, no_context):
        with pytest.raises(ConfigError):
            get_context()

    def test_set_and_get(self, no_context):
        ctx = Context.open(models=BLOG_MODELS)
        assert set_context(ctx) is ctx
        assert get_context() is ctx
        ctx.close()

    def test_models_need_a_context(self, no_context):
        with pytest.raises(ConfigError):
            Author.query().count()

    def test_connect(self, no_context):
        ctx = connect(":memory:", models=BLOG_MODELS)
        assert get_context() is ctx
        create_schema(ctx)
        assert Author.create(name="Ada").id == 1
        ctx.close()
