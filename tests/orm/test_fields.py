"""Tests for property declaration and descriptor tables."""

from __future__ import annotations

from typing import ClassVar

import pytest

from _support.blog import Author, Post
from keystone import Model, field
from keystone.core.errors import TypeMappingError
from keystone.orm.fields import Property
from keystone.orm.types import FieldKind


class TestDescriptorTable:
    def test_declaration_order_with_base_fields_first(self):
        assert list(Post.descriptor_table()) == [
            "id",
            "created_at",
            "modified_at",
            "deleted_at",
            "title",
            "views",
            "draft",
            "author",
            "tags",
        ]

    def test_columns_are_camelized(self):
        assert Post.descriptor_table().columns() == ["Id", "CreatedAt", "ModifiedAt", "DeletedAt", "Title", "Views", "Draft"]

    def test_relations_have_no_column(self):
        table = Post.descriptor_table()
        assert table["author"].column is None
        assert table["author"].kind is FieldKind.ENTITY
        assert table["tags"].is_list
        assert [f.name for f in table.relations()] == ["author", "tags"]

    def test_table_is_cached(self):
        assert Author.descriptor_table() is Author.descriptor_table()

    def test_properties_become_descriptors(self):
        assert isinstance(Post.__dict__["title"], Property)

    @pytest.mark.parametrize("name", ["title", "Title"])
    def test_resolve_member(self, name):
        assert Post.descriptor_table().resolve_member(name).name == "title"

    def test_resolve_member_by_camel_case_attribute(self):
        assert Post.descriptor_table().resolve_member("ModifiedAt").name == "modified_at"

    def test_resolve_unknown_member(self):
        assert Post.descriptor_table().resolve_member("nope") is None

    def test_options_are_kept(self):
        title = Post.descriptor_table()["title"]
        assert title.options.required
        assert title.options.min_length == 3


class TestDeclarations:
    def test_column_override(self, scratch_models):
        class Gadget(Model):
            slug: str = field(column="UrlSlug", default="")

        table = Gadget.descriptor_table()
        assert table["slug"].column == "UrlSlug"
        assert table.by_column("UrlSlug").name == "slug"

    def test_default_factory(self, scratch_models):
        class Widget(Model):
            label: str = field(default_factory=lambda: "fresh")

        assert Widget().label == "fresh"

    def test_default_and_factory_are_exclusive(self):
        with pytest.raises(ValueError):
            field(default=1, default_factory=int)

    def test_classvars_and_private_names_are_skipped(self, scratch_models):
        class Sprocket(Model):
            teeth: int = 0
            registry_name: ClassVar[str] = "sprockets"
            _cache: dict = {}

        assert "registry_name" not in Sprocket.descriptor_table()
        assert "_cache" not in Sprocket.descriptor_table()

    def test_unsupported_annotation(self, scratch_models):
        class Broken(Model):
            payload: dict

        with pytest.raises(TypeMappingError) as exc_info:
            Broken.descriptor_table()
        assert exc_info.value.context.model == "Broken"

    def test_unresolvable_forward_reference(self, scratch_models):
        class Orphan(Model):
            parent: NoSuchModel | None = None  # noqa: F821

        with pytest.raises(TypeMappingError):
            Orphan.descriptor_table()
