"""
Lifecycle Orchestrator - drives registered models through load, save and
named operations.

Each batch call follows the same shape::

    caller ─► resolve names against the registry
           ─► filter / order the batch
           ─► before_* phase   (cancellable, per model, priority order)
           ─► per-model state machine, batch run in parallel or sequence
           ─► after_* phase    (non-cancellable, completed models only)
           ─► result

Re-entrancy:
    While an operation runs on a model, its record holds a future for it.
    A second request for the same operation on the same model awaits that
    future instead of invoking the operation again. This applies to
    ``load``, ``save`` and every ``execute`` operation. If the task running
    the operation is cancelled, waiting callers see the operation fail.

Failure propagation:
    ``load`` and ``execute`` raise as soon as a model fails. ``save`` lets
    every model of the batch finish, then raises one :class:`SaveFailedError`
    naming all failures. In every case the ``after_*`` phase is skipped.
"""

from __future__ import annotations

import asyncio
import inspect
import math
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from modelspine.core.errors import (
    ExecuteFailedError,
    ExecuteRejectedNotLoadedError,
    LoadFailedError,
    PermissionDeniedError,
    SaveFailedError,
    SaveRejectedNotLoadedError,
)
from modelspine.core.logging import get_logger
from modelspine.core.settings import EngineSettings, get_settings
from modelspine.core.values import resolve_async
from modelspine.events import EventsFacade, ModelEvent, ModelEventBus
from modelspine.models.definition import (
    LoadState,
    ModelDefinition,
    ModelRecord,
    OperationState,
    SaveState,
    Target,
    merge_data,
)
from modelspine.models.registry import ModelRegistry
from modelspine.models.resolver import DependencyResolver
from modelspine.models.results import BatchResult, OutcomeStatus

logger = get_logger(__name__)

_NO_RESULT = object()


class ModelOrchestrator:
    """
    Registry, event bus and dependency resolver of one application.

    Instances are independent; nothing is shared between two orchestrators
    except the default :class:`EngineSettings` when none is passed.

    Example:
        engine = ModelOrchestrator()
        engine.define("customer", {"load": fetch_customer})
        engine.define("invoice", {
            "load": fetch_invoice,
            "save": post_invoice,
            "dependencies": ["customer"],
            "is_dirty": lambda: form.dirty,
        })

        data = await engine.require("invoice")      # customer, then invoice
        result = await engine.save("invoice", data)
    """

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self._settings = settings
        self.registry = ModelRegistry()
        self.bus = ModelEventBus(settings)
        self.events = EventsFacade(self.bus, self.registry.require_defined)
        self.resolver = DependencyResolver(self.registry, self, lambda: self.settings)

    @property
    def settings(self) -> EngineSettings:
        return self._settings if self._settings is not None else get_settings()

    # =========================================================================
    # Registry
    # =========================================================================

    def define(self, name: str, definition: ModelDefinition | Mapping[str, Any]) -> None:
        """Register a model.

        Raises:
            InvalidNameError: name is empty
            InvalidDefinitionError: definition is ``None`` or malformed
            DuplicateModelError: name is already registered
        """
        definition = self.registry.check_definition(name, definition)
        self.bus.emit(ModelEvent.DEFINE, [name])
        self.registry.add(name, definition)

    def undefine(self, names: str | Iterable[str]) -> None:
        """Remove models, firing ``undefine`` to their listeners first.

        Raises:
            UnknownModelError: any name is not registered (nothing is removed)
        """
        batch = _unique(self.registry.require_defined(names))
        self.bus.emit(ModelEvent.UNDEFINE, batch)
        for name in batch:
            self.bus.discard_model(name)
            self.registry.remove(name)

    def is_defined(self, name: str) -> bool:
        return name in self.registry

    def get_load_state(self, name: str) -> str:
        """Load state label, or ``"undefined"`` for an unknown model."""
        return self.registry.load_state(name)

    def get_save_state(self, name: str) -> str:
        """Save state label, or ``"undefined"`` for an unknown model."""
        return self.registry.save_state(name)

    def get_operation_state(self, name: str, operation: str) -> str:
        return self.registry.operation_state(name, operation)

    async def drain_events(self) -> None:
        """Wait until ``define``/``undefine`` notifications have been delivered."""
        await self.bus.drain()

    # =========================================================================
    # Load / require
    # =========================================================================

    async def load(self, names: str | Iterable[str], target: Target | None = None) -> Target:
        """Load models into ``target``, reloading models already loaded.

        Models without a ``load`` function are ignored. Returns ``target``
        once every model has loaded and ``after_load`` listeners have run.

        Raises:
            UnknownModelError: a name is not registered
            PermissionDeniedError: ``load_permission`` denied (when configured to raise)
            LoadFailedError: a load function failed or returned nothing
        """
        target = {} if target is None else target
        batch = [
            name
            for name in self._batch(names)
            if self.registry.get(name).definition.load is not None
        ]
        if not batch:
            return target

        logger.debug("model_orchestrator.load.start", models=batch)
        proceed = await self.bus.notify_cancellable(ModelEvent.BEFORE_LOAD, batch, "load")
        _log_cancelled("load", batch, proceed)

        outcomes = await self._run_batch(
            "load", proceed, lambda name: self._load_one(name, target)
        )
        loaded = [name for name, ok in zip(proceed, outcomes) if ok]
        if loaded:
            await self.bus.notify(ModelEvent.AFTER_LOAD, loaded, "load")
        logger.debug("model_orchestrator.load.complete", models=loaded)
        return target

    async def require(self, names: str | Iterable[str], target: Target | None = None) -> Target:
        """Ensure models and their transitive dependencies are loaded.

        Models already ``loaded`` are not reloaded.

        Raises:
            UnknownModelError: a name is not registered
            UndefinedDependencyError: a dependency is not registered (when configured to raise)
            CyclicDependencyError: the dependency chain loops
            LoadFailedError: a model or dependency did not load
        """
        target = {} if target is None else target
        batch = _unique(self.registry.require_defined(names))
        await self.bus.notify(ModelEvent.REQUIRE, batch)
        await self.resolver.require(batch, target)
        return target

    async def wait_for_load(self, record: ModelRecord, target: Target) -> None:
        """Join the load currently running on ``record``."""
        future = record.inflight.get("load")
        if future is None:
            if record.load_state is LoadState.LOADED:
                return
            raise LoadFailedError(record.name, f"no load in progress ({record.load_state.value})")
        try:
            data = await asyncio.shield(future)
        except LoadFailedError as e:
            raise LoadFailedError(record.name, cause=e) from e
        merge_data(target, data)

    async def _load_one(self, name: str, target: Target) -> bool:
        record = self.registry.get(name)
        if record.load_state.in_flight:
            await self.wait_for_load(record, target)
            return True

        if not await self._permitted(record, "load"):
            return False
        if record.load_state.in_flight:
            await self.wait_for_load(record, target)
            return True

        future = _begin(record, "load")
        record.load_state = (
            LoadState.LOADING
            if record.load_state is LoadState.UNINITIALIZED
            else LoadState.RELOADING
        )
        try:
            data = await self._call_operation(record, "load", target)
            error = LoadFailedError(name, "load returned no result") if data is _NO_RESULT else None
        except asyncio.CancelledError as e:
            _revert_load(record)
            _finish(record, "load", future, error=LoadFailedError(name, "load cancelled", cause=e))
            raise
        except Exception as e:
            error = LoadFailedError(name, cause=e)

        if error is not None:
            _revert_load(record)
            _finish(record, "load", future, error=error)
            logger.warning(
                "model_orchestrator.load.failed",
                model=name,
                load_state=record.load_state.value,
                error=str(error.cause or error),
            )
            raise error

        record.load_state = LoadState.LOADED
        record.data = data
        merge_data(target, data)
        _finish(record, "load", future, result=data)
        return True

    # =========================================================================
    # Validate
    # =========================================================================

    async def validate(self, names: str | Iterable[str]) -> bool:
        """Validate models, stopping at the first invalid one.

        Models are checked in reverse of the order given. A model without a
        ``validate`` field is valid. A ``validate`` listener vetoing a model
        makes it invalid.
        """
        batch = self._batch(names)
        if not batch:
            return True

        proceed = set(await self.bus.notify_cancellable(ModelEvent.VALIDATE, batch))
        for name in batch:
            if name not in proceed:
                logger.debug("model_orchestrator.validate.vetoed", model=name)
                return False
            if not await self._run_validator(self.registry.get(name)):
                logger.debug("model_orchestrator.validate.invalid", model=name)
                return False
        return True

    async def _run_validator(self, record: ModelRecord) -> bool:
        validator = record.definition.validate
        if validator is None:
            return True
        try:
            return bool(await resolve_async(validator))
        except Exception as e:
            logger.warning("model_orchestrator.validate.error", model=record.name, error=str(e))
            return False

    # =========================================================================
    # Save
    # =========================================================================

    async def save(self, names: str | Iterable[str], target: Target | None = None) -> BatchResult:
        """Save dirty models in ascending ``save_priority`` order.

        Each model is validated just before its save; an invalid model is
        silently left unsaved.

        Raises:
            UnknownModelError: a name is not registered
            SaveRejectedNotLoadedError: a model is not loaded (when configured to raise)
            PermissionDeniedError: ``save_permission`` denied (when configured to raise)
            SaveFailedError: after the whole batch ran, if any save failed
        """
        target = {} if target is None else target
        ordered = await self._prepare("save", names)
        result = BatchResult(operation="save", requested=ordered)
        if not ordered:
            return result

        logger.debug("model_orchestrator.save.start", models=ordered, batch_id=result.batch_id)
        proceed = await self._before(ModelEvent.BEFORE_SAVE, ordered, "save", result)
        await self._run_batch("save", proceed, lambda name: self._save_one(name, target, result))

        if result.failed:
            failures = {o.name: o.exception for o in result.outcomes if o.status is OutcomeStatus.FAILED}
            logger.warning("model_orchestrator.save.failed", **result.to_dict())
            raise SaveFailedError(failures, result=result)

        await self._after(ModelEvent.AFTER_SAVE, result, "save")
        logger.info("model_orchestrator.save.complete", **result.to_dict())
        return result

    async def save_all(self, target: Target | None = None) -> BatchResult:
        """Save every registered model."""
        return await self.save(self.registry.names(), target)

    async def _save_one(self, name: str, target: Target, batch: BatchResult) -> None:
        record = self.registry.get(name)
        if "save" in record.inflight:
            await self._join(record, "save", batch)
            return

        if not await self._permitted(record, "save"):
            batch.record(name, OutcomeStatus.SKIPPED)
            return
        if not await self.validate([name]):
            batch.record(name, OutcomeStatus.INVALID)
            return
        if "save" in record.inflight:
            await self._join(record, "save", batch)
            return

        future = _begin(record, "save")
        record.save_state = SaveState.SAVING
        try:
            value = await self._call_operation(record, "save", target)
        except asyncio.CancelledError as e:
            record.save_state = SaveState.UNSAVED
            _finish(record, "save", future, error=SaveFailedError({name: e}))
            raise
        except Exception as e:
            record.save_state = SaveState.UNSAVED
            _finish(record, "save", future, error=e)
            batch.record(name, OutcomeStatus.FAILED, exception=e)
            return

        if value is _NO_RESULT:
            record.save_state = SaveState.UNSAVED
            _finish(record, "save", future, error=SaveFailedError({name: None}))
            batch.record(name, OutcomeStatus.FAILED, error="save returned no result")
            return

        record.save_state = SaveState.SAVED
        _finish(record, "save", future, result=value)
        batch.record(name, OutcomeStatus.COMPLETED, result=value)

    # =========================================================================
    # Execute
    # =========================================================================

    async def execute(
        self,
        names: str | Iterable[str],
        operation: str,
        target: Target | None = None,
    ) -> BatchResult:
        """Run the named ``operation`` on dirty models that define it.

        Follows the save pipeline (dirty filter, ``<operation>`` priority
        order, ``<operation>`` permission, per-model validation) with the
        ``before_execute``/``after_execute`` events, whose payload is the
        operation name. ``execute(names, "save")`` is :meth:`save`.

        Raises:
            UnknownModelError: a name is not registered
            ExecuteRejectedNotLoadedError: a model is not loaded (when configured to raise)
            PermissionDeniedError: permission denied (when configured to raise)
            ExecuteFailedError: as soon as one model's operation fails
        """
        if operation == "save":
            return await self.save(names, target)
        if operation == "load":
            raise ValueError("load is not an execute operation; use load() or require()")

        target = {} if target is None else target
        ordered = await self._prepare(operation, names)
        result = BatchResult(operation=operation, requested=ordered)
        if not ordered:
            return result

        logger.debug(
            "model_orchestrator.execute.start",
            operation=operation,
            models=ordered,
            batch_id=result.batch_id,
        )
        proceed = await self._before(ModelEvent.BEFORE_EXECUTE, ordered, operation, result)
        await self._run_batch(
            operation,
            proceed,
            lambda name: self._execute_one(name, operation, target, result),
        )
        await self._after(ModelEvent.AFTER_EXECUTE, result, operation)
        logger.info("model_orchestrator.execute.complete", **result.to_dict())
        return result

    async def _execute_one(
        self, name: str, operation: str, target: Target, batch: BatchResult
    ) -> None:
        record = self.registry.get(name)
        if operation in record.inflight:
            await self._join(record, operation, batch)
            return

        if not await self._permitted(record, operation):
            batch.record(name, OutcomeStatus.SKIPPED)
            return
        if not await self.validate([name]):
            batch.record(name, OutcomeStatus.INVALID)
            return
        if operation in record.inflight:
            await self._join(record, operation, batch)
            return

        future = _begin(record, operation)
        record.operation_states[operation] = OperationState.RUNNING
        try:
            value = await self._call_operation(record, operation, target)
            error = ExecuteFailedError(name, operation) if value is _NO_RESULT else None
        except asyncio.CancelledError as e:
            record.operation_states[operation] = OperationState.FAILED
            _finish(record, operation, future, error=ExecuteFailedError(name, operation, cause=e))
            raise
        except Exception as e:
            error = ExecuteFailedError(name, operation, cause=e)

        if error is not None:
            record.operation_states[operation] = OperationState.FAILED
            _finish(record, operation, future, error=error)
            batch.record(name, OutcomeStatus.FAILED, exception=error)
            logger.warning(
                "model_orchestrator.execute.failed",
                model=name,
                operation=operation,
                error=str(error.cause or error),
            )
            raise error

        record.operation_states[operation] = OperationState.DONE
        _finish(record, operation, future, result=value)
        batch.record(name, OutcomeStatus.COMPLETED, result=value)

    # =========================================================================
    # Shared pipeline steps
    # =========================================================================

    def _batch(self, names: str | Iterable[str] | None) -> list[str]:
        """Registered, de-duplicated names in reverse of the order given."""
        return list(reversed(_unique(self.registry.require_defined(names))))

    async def _prepare(self, operation: str, names: str | Iterable[str]) -> list[str]:
        """Filter and order a save/execute batch."""
        batch = [
            name
            for name in self._batch(names)
            if self.registry.get(name).definition.operation(operation) is not None
        ]
        dirty = [name for name in batch if await self._is_dirty(self.registry.get(name))]
        ordered = await self._by_priority(operation, dirty)

        settings = self.settings
        if settings.allows_unloaded(operation):
            return ordered
        unloaded = [
            name for name in ordered if self.registry.get(name).load_state is not LoadState.LOADED
        ]
        if unloaded and settings.throws_on_unloaded(operation):
            state = self.registry.load_state(unloaded[0])
            if operation == "save":
                raise SaveRejectedNotLoadedError(unloaded[0], state)
            raise ExecuteRejectedNotLoadedError(unloaded[0], operation, state)
        if unloaded:
            logger.debug("model_orchestrator.unloaded_skipped", operation=operation, models=unloaded)
        return [name for name in ordered if name not in unloaded]

    async def _is_dirty(self, record: ModelRecord) -> bool:
        if record.definition.is_dirty is None:
            return True
        return bool(await resolve_async(record.definition.is_dirty))

    async def _by_priority(self, operation: str, names: list[str]) -> list[str]:
        priorities: dict[str, float] = {}
        for name in names:
            value = await resolve_async(self.registry.get(name).definition.priority_for(operation))
            priorities[name] = math.inf if value is None else value
        return sorted(names, key=priorities.__getitem__)

    async def _before(
        self, event: ModelEvent, names: list[str], payload: str, batch: BatchResult
    ) -> list[str]:
        proceed = await self.bus.notify_cancellable(event, names, payload)
        for name in _log_cancelled(payload, names, proceed):
            batch.record(name, OutcomeStatus.CANCELLED)
        return proceed

    async def _after(self, event: ModelEvent, batch: BatchResult, payload: str) -> None:
        if batch.completed:
            await self.bus.notify(event, batch.completed, payload)

    async def _run_batch(
        self,
        operation: str,
        names: list[str],
        worker: Callable[[str], Awaitable[Any]],
    ) -> list[Any]:
        if self.settings.runs_parallel(operation) and len(names) > 1:
            return list(await asyncio.gather(*(worker(name) for name in names)))
        return [await worker(name) for name in names]

    async def _permitted(self, record: ModelRecord, operation: str) -> bool:
        """Evaluate ``<operation>`` permission; raise or return False when denied."""
        permission = record.definition.permission_for(operation)
        if permission is None:
            return True
        cause: Exception | None = None
        try:
            granted = bool(await resolve_async(permission))
        except Exception as e:
            granted, cause = False, e
        if granted:
            return True
        if self.settings.throw_on_permission_violation:
            raise PermissionDeniedError(record.name, operation, cause=cause)
        logger.info("model_orchestrator.permission_skipped", model=record.name, operation=operation)
        return False

    async def _call_operation(self, record: ModelRecord, operation: str, target: Target) -> Any:
        """Invoke an operation; ``_NO_RESULT`` for a falsy synchronous result."""
        result = record.definition.operation(operation)(target)
        if inspect.isawaitable(result):
            return await result
        return result if result else _NO_RESULT

    async def _join(self, record: ModelRecord, operation: str, batch: BatchResult) -> None:
        """Record the outcome of an operation another call already started."""
        try:
            value = await asyncio.shield(record.inflight[operation])
        except Exception as e:
            batch.record(record.name, OutcomeStatus.FAILED, exception=e)
            if operation != "save":
                raise ExecuteFailedError(record.name, operation, cause=e) from e
            return
        batch.record(record.name, OutcomeStatus.COMPLETED, result=value)


# =============================================================================
# Helpers
# =============================================================================


def _unique(names: list[str]) -> list[str]:
    return list(dict.fromkeys(names))


def _revert_load(record: ModelRecord) -> None:
    record.load_state = (
        LoadState.UNINITIALIZED if record.load_state is LoadState.LOADING else LoadState.UNSTABLE
    )


def _begin(record: ModelRecord, operation: str) -> asyncio.Future[Any]:
    future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
    future.add_done_callback(_consume_exception)
    record.inflight[operation] = future
    return future


def _finish(
    record: ModelRecord,
    operation: str,
    future: asyncio.Future[Any],
    *,
    result: Any = None,
    error: BaseException | None = None,
) -> None:
    record.inflight.pop(operation, None)
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


def _consume_exception(future: asyncio.Future[Any]) -> None:
    # joined callers re-raise it; nobody else retrieves it
    if not future.cancelled():
        future.exception()


def _log_cancelled(operation: str, names: list[str], proceed: list[str]) -> list[str]:
    cancelled = [name for name in names if name not in proceed]
    if cancelled:
        logger.info("model_orchestrator.cancelled", operation=operation, models=cancelled)
    return cancelled


__all__ = ["ModelOrchestrator"]
