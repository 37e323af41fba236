"""
CLI utility helpers — model loading and output formatting.
"""

from __future__ import annotations

import importlib
import json
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from keystone.core.errors import KeystoneError
from keystone.orm.registry import ModelRegistry, default_registry
from keystone.orm.relations import Relation

console = Console()
err_console = Console(stderr=True)


# ── Model loading ────────────────────────────────────────────────────────


def load_models(module: str) -> ModelRegistry:
    """Import ``module`` and return its models plus every model they reference."""
    try:
        importlib.import_module(module)
    except ImportError as e:
        fail(f"Cannot import {module!r}: {e}")
    except KeystoneError as e:
        fail(e.message)

    pending = [
        m for m in default_registry.models()
        if m.__module__ == module or m.__module__.startswith(f"{module}.")
    ]
    if not pending:
        fail(f"{module!r} defines no models")

    found: set[type] = set()
    try:
        while pending:
            model = pending.pop()
            if model in found:
                continue
            found.add(model)
            pending.extend(info.target for info in model.descriptor_table().relations())
    except KeystoneError as e:
        fail(e.message)
    return ModelRegistry(found)


def parse_arg(text: str) -> Any:
    """CLI placeholder value: JSON when it parses (``3``, ``true``, ``null``), else the raw string."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


# ── Output helpers ───────────────────────────────────────────────────────


def fail(message: str) -> None:
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=1)


def relation_to_dict(relation: Relation) -> dict[str, Any]:
    return {
        "local_type": relation.local_type.__name__,
        "local_property": relation.local_property,
        "foreign_type": relation.foreign_type.__name__,
        "foreign_property": relation.foreign_property,
        "relation_type": relation.relation_type.value,
        "local_table_name": relation.local_table_name,
        "foreign_table_name": relation.foreign_table_name,
        "foreign_key_table_name": relation.foreign_key_table_name,
        "foreign_key_column_name": relation.foreign_key_column_name,
        "pivot_table_name": relation.pivot_table_name,
        "pivot_table_first_column_name": relation.pivot_table_first_column_name,
        "pivot_table_second_column_name": relation.pivot_table_second_column_name,
        "link_identifier": relation.link_identifier,
    }


def relations_table(relations: list[Relation]) -> Table:
    table = Table(title="Relations", show_lines=False)
    for column in ("Property", "Type", "Target", "Storage", "Link"):
        table.add_column(column)
    for relation in relations:
        if relation.pivot_table_name:
            storage = (
                f"{relation.pivot_table_name}"
                f"({relation.pivot_table_first_column_name}, {relation.pivot_table_second_column_name})"
            )
        else:
            storage = f"{relation.foreign_key_table_name}.{relation.foreign_key_column_name}"
        target = f"{relation.foreign_type.__name__}.{relation.foreign_property or '-'}"
        table.add_row(
            f"{relation.local_type.__name__}.{relation.local_property or '-'}",
            relation.relation_type.value,
            target,
            storage,
            relation.link_identifier or "",
        )
    return table


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))
