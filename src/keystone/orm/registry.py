"""Process-scoped model registry.

Every concrete ``Model`` subclass registers itself here when its class body
finishes executing. A :class:`~keystone.orm.context.Context` reads the
registry to know which types take part in relationship discovery, and the
descriptor tables use its names to resolve forward-referenced annotations.

The registry is explicit state with an explicit :meth:`ModelRegistry.reset`
for test isolation; contexts may also be built over a private registry
holding just the models a test cares about.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from keystone.core.errors import ConfigError


class ModelRegistry:
    """Ordered set of model classes keyed by ``module.qualname``."""

    def __init__(self, models: Iterable[type] = ()) -> None:
        self._models: dict[str, type] = {}
        for model in models:
            self.register(model)

    @staticmethod
    def _key(model: type) -> str:
        return f"{model.__module__}.{model.__qualname__}"

    def register(self, model: type) -> type:
        self._models[self._key(model)] = model
        return model

    def unregister(self, model: type) -> None:
        self._models.pop(self._key(model), None)

    def models(self) -> list[type]:
        """All registered models, sorted by simple name then module."""
        return sorted(self._models.values(), key=lambda m: (m.__name__, m.__module__))

    def get(self, name: str) -> type:
        """Look a model up by ``module.qualname`` or by unique simple name."""
        if name in self._models:
            return self._models[name]
        matches = [m for m in self._models.values() if m.__name__ == name]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            raise ConfigError(f"No model named {name!r} is registered")
        raise ConfigError(f"Model name {name!r} is ambiguous: {sorted(self._key(m) for m in matches)}")

    def namespace(self) -> dict[str, type]:
        """Simple name → class for every unambiguous simple name."""
        counts: dict[str, int] = {}
        for model in self._models.values():
            counts[model.__name__] = counts.get(model.__name__, 0) + 1
        return {m.__name__: m for m in self._models.values() if counts[m.__name__] == 1}

    def reset(self) -> None:
        self._models.clear()

    def __contains__(self, model: object) -> bool:
        return isinstance(model, type) and self._models.get(self._key(model)) is model

    def __iter__(self) -> Iterator[type]:
        return iter(self.models())

    def __len__(self) -> int:
        return len(self._models)

    def __repr__(self) -> str:
        return f"ModelRegistry({[m.__name__ for m in self.models()]})"


default_registry = ModelRegistry()


__all__ = [
    "ModelRegistry",
    "default_registry",
]
