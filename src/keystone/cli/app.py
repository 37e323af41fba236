"""
Root Typer application for the keystone CLI.

Commands inspect a models module without touching a real database:

- ``keystone relations MODULE`` lists the discovered relationships;
- ``keystone sql MODULE MODEL EXPRESSION`` prints the SELECT a filter compiles to;
- ``keystone config`` shows the effective settings.
"""

from __future__ import annotations

import typer
from typer import Typer

from keystone.core.errors import KeystoneError
from keystone.core.logging import configure_from_settings
from keystone.core.settings import get_settings

from keystone.cli.utils import console, fail, load_models, parse_arg, print_json, relation_to_dict, relations_table

app = Typer(
    name="keystone",
    help="keystone — convention-driven ORM core.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from keystone import __version__

        typer.echo(f"keystone {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at debug level."),
) -> None:
    """keystone CLI — inspect models, relations and generated SQL."""
    configure_from_settings(get_settings(), level="DEBUG" if verbose else "WARNING")


# ── Commands ─────────────────────────────────────────────────────────────


@app.command()
def relations(
    module: str = typer.Argument(..., help="Importable module defining the models"),
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Discover and list every relationship between the models of MODULE."""
    from keystone.orm.relations import RelationCache

    registry = load_models(module)
    try:
        found = RelationCache(registry).init()
    except KeystoneError as e:
        fail(e.message)

    if json_out:
        print_json([relation_to_dict(r) for r in found])
        return
    console.print(relations_table(found))


@app.command()
def sql(
    module: str = typer.Argument(..., help="Importable module defining the models"),
    model: str = typer.Argument(..., help="Model class name"),
    expression: str = typer.Argument(..., help='Filter expression, e.g. "views > {0}"'),
    args: list[str] = typer.Option([], "--arg", "-a", help="Value for {0}, {1}, ... (JSON or text)"),
    like: bool = typer.Option(False, "--like", help="Compile == / != as LIKE / NOT LIKE"),
    trashed: bool = typer.Option(False, "--with-trashed", help="Do not exclude soft-deleted rows"),
) -> None:
    """Print the SQL and parameters a filter on MODEL compiles to."""
    from keystone.orm.context import Context

    registry = load_models(module)
    try:
        model_cls = registry.get(model)
        context = Context.open(":memory:", registry=registry)
        query = context.query(model_cls)
        values = [parse_arg(a) for a in args]
        query = query.like(expression, *values) if like else query.filter(expression, *values)
        if trashed:
            query = query.with_trashed()
        builder = query.defining_query
    except KeystoneError as e:
        fail(e.message)

    console.print(builder.sql, highlight=False)
    if builder.parameters:
        print_json(builder.parameters)


@app.command()
def config(
    json_out: bool = typer.Option(False, "--json", help="JSON output"),
) -> None:
    """Show the effective KEYSTONE_* settings."""
    settings = get_settings()
    if json_out:
        console.print_json(settings.model_dump_json())
        return
    for name, value in settings.model_dump().items():
        console.print(f"[bold]{name}[/bold] = {value!r}")


if __name__ == "__main__":
    app()
