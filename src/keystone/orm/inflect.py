"""Pluralization and case conversion used for table and column naming.

The discoverer and the builder consume these as black-box string transforms
through the :class:`Inflector` protocol; the default implementation delegates
to the ``inflection`` library.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import inflection


@runtime_checkable
class Inflector(Protocol):
    def pluralize(self, word: str) -> str: ...

    def singularize(self, word: str) -> str: ...

    def underscore(self, word: str) -> str: ...

    def camelize(self, word: str) -> str: ...


class InflectionInflector:
    """English inflection backed by the ``inflection`` package."""

    def pluralize(self, word: str) -> str:
        return inflection.pluralize(word)

    def singularize(self, word: str) -> str:
        return inflection.singularize(word)

    def underscore(self, word: str) -> str:
        return inflection.underscore(word)

    def camelize(self, word: str) -> str:
        return inflection.camelize(word, uppercase_first_letter=True)


default_inflector = InflectionInflector()


__all__ = [
    "Inflector",
    "InflectionInflector",
    "default_inflector",
]
