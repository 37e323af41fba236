"""
Shared pytest fixtures for keystone tests.

This module provides:
- ``context``: an in-memory SQLite context over the blog models, with their
  tables created, installed as the current context
- ``statements``: every SQL statement the context's executor runs
- ``scratch_models``: unregisters models declared inside a test
- logging reset between tests

Usage:
    def test_save(context, statements):
        Author(name="Ada").save()
        assert statements[0].startswith('INSERT INTO "Authors"')
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
import structlog

# Ensure keystone and the shared test models are importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent))

from keystone.orm.context import Context, reset_context, set_context
from keystone.orm.registry import default_registry

from _support.blog import BLOG_MODELS, create_schema


# =============================================================================
# Context Fixtures
# =============================================================================


@pytest.fixture
def context() -> Iterator[Context]:
    """In-memory blog database installed as the current context."""
    ctx = Context.open(":memory:", models=BLOG_MODELS)
    create_schema(ctx)
    set_context(ctx)
    yield ctx
    reset_context()
    ctx.close()


@pytest.fixture
def statements(context: Context, monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """SQL text of every statement executed after the fixture is set up."""
    recorded: list[str] = []
    executor = context.executor
    run = executor._run

    def recording_run(sql, params):
        recorded.append(sql)
        return run(sql, params)

    monkeypatch.setattr(executor, "_run", recording_run)
    return recorded


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture
def scratch_models() -> Iterator[None]:
    """Models declared during the test are removed from the default registry."""
    before = set(default_registry.models())
    yield
    for model in default_registry.models():
        if model not in before:
            default_registry.unregister(model)


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Undo ``configure_logging`` calls made by a test (the CLI configures on startup)."""
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()
