"""
Dependency Resolver - loads a model's declared dependencies before the model.

``require`` semantics:
1. Resolve each requested model's ``dependencies`` (literal or lazy)
2. Skip or reject names that are not registered (``throw_on_undefined_dependencies``)
3. Depth-first, in declared order, make every dependency reach ``loaded``
4. Load the model itself, unless it is already ``loaded``

Cycle policy:
    The resolver walks dependencies depth-first and keeps the current path.
    Re-entering a model that is already on the path raises
    :class:`CyclicDependencyError` before any model on the cycle is loaded.
    A path is tracked per chain rather than per model, so two branches of a
    diamond reaching the same dependency concurrently is not a cycle.

Duplicate loads:
    Concurrent chains that reach the same unloaded model share one pending
    future, so each model is loaded at most once. The future carries the
    loaded data, which every joining chain merges into its own target.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

from modelspine.core.errors import (
    CyclicDependencyError,
    LoadFailedError,
    UndefinedDependencyError,
)
from modelspine.core.logging import get_logger
from modelspine.core.settings import EngineSettings
from modelspine.core.values import as_name_list, resolve_async
from modelspine.models.definition import LoadState, ModelRecord, Target, merge_data
from modelspine.models.registry import ModelRegistry

logger = get_logger(__name__)


class ModelLoader(Protocol):
    """What the resolver needs from the orchestrator."""

    def load(self, names: Iterable[str], target: Target | None = None) -> Awaitable[Target]: ...

    def wait_for_load(self, record: ModelRecord, target: Target) -> Awaitable[None]: ...


class DependencyResolver:
    """
    Ensures transitive dependencies are loaded before requested models.

    Example:
        resolver = DependencyResolver(registry, orchestrator, lambda: settings)
        await resolver.require(["invoice"], target)
        # customer and currency (invoice's dependencies) loaded first
    """

    def __init__(
        self,
        registry: ModelRegistry,
        loader: ModelLoader,
        settings: Callable[[], EngineSettings],
    ) -> None:
        self._registry = registry
        self._loader = loader
        self._settings = settings
        self._pending: dict[str, asyncio.Future[Any]] = {}

    async def require(self, names: list[str], target: Target) -> None:
        """Load ``names`` and everything they depend on.

        The batch is processed in reverse of the order given; each model's
        dependency list is processed in declared order.
        """
        batch = list(reversed(names))
        logger.debug("dependency_resolver.start", models=batch)
        if self._settings().parallel_load and len(batch) > 1:
            await asyncio.gather(*(self._ensure(name, target, ()) for name in batch))
        else:
            for name in batch:
                await self._ensure(name, target, ())

    async def dependencies_of(self, record: ModelRecord) -> list[str]:
        """Registered dependency names of ``record``, in declared order.

        Raises:
            UndefinedDependencyError: a dependency is not registered and
                ``throw_on_undefined_dependencies`` is set
        """
        declared = as_name_list(await resolve_async(record.definition.dependencies))
        resolved = []
        for dependency in declared:
            if dependency in self._registry:
                resolved.append(dependency)
            elif self._settings().throw_on_undefined_dependencies:
                raise UndefinedDependencyError(record.name, dependency)
            else:
                logger.debug(
                    "dependency_resolver.undefined_skipped",
                    model=record.name,
                    dependency=dependency,
                )
        return resolved

    async def _ensure(self, name: str, target: Target, path: tuple[str, ...]) -> None:
        if name in path:
            cycle = [*path[path.index(name):], name]
            raise CyclicDependencyError(cycle)

        record = self._registry.get(name)
        chain = (*path, name)
        for dependency in await self.dependencies_of(record):
            await self._ensure(dependency, target, chain)
            dependency_record = self._registry.get(dependency)
            if not _satisfied(dependency_record):
                raise LoadFailedError(
                    dependency,
                    f"required by {name} but {dependency_record.load_state.value}",
                )

        await self._ensure_loaded(record, target)

    async def _ensure_loaded(self, record: ModelRecord, target: Target) -> None:
        if _satisfied(record):
            return

        pending = self._pending.get(record.name)
        if pending is not None:
            merge_data(target, await asyncio.shield(pending))
            return

        if record.load_state.in_flight:
            await self._loader.wait_for_load(record, target)
            return

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        future.add_done_callback(_consume_exception)
        self._pending[record.name] = future
        try:
            await self._loader.load([record.name], target)
        except asyncio.CancelledError as e:
            future.set_exception(LoadFailedError(record.name, "load cancelled", cause=e))
            raise
        except Exception as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(record.data if _satisfied(record) else None)
        finally:
            self._pending.pop(record.name, None)


def _satisfied(record: ModelRecord) -> bool:
    """A model with nothing to load counts as loaded."""
    return record.definition.load is None or record.load_state is LoadState.LOADED


def _consume_exception(future: asyncio.Future[Any]) -> None:
    if not future.cancelled():
        future.exception()


__all__ = ["DependencyResolver", "ModelLoader"]
