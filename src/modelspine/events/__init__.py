"""Model lifecycle event bus.

Any part of an application can observe, and for some events veto, the
lifecycle of registered models. Listeners subscribe to one event either for
a specific model name or for all models, with a numeric priority.

Two dispatch primitives:

``notify``              fan-out for observational events (``define``,
                        ``undefine``, ``require``, ``after_*``). Every
                        listener runs; a failing listener is logged and
                        skipped.
``notify_cancellable``  sequential chain for gating events (``before_*``,
                        ``validate``). Per model, listeners run one at a time
                        in priority order; a listener returning ``False``
                        (directly or through an awaitable) or raising vetoes
                        that model and the rest of its chain is skipped.

Ordering: listeners for a model are the union of its named listeners and the
all-models listeners, sorted by descending priority, ties broken by
registration order.

Usage::

    bus = ModelEventBus()

    async def confirm(model: str, operation: str) -> bool:
        return await dialog.ask(f"Save {model}?")

    handle = bus.subscribe(ModelEvent.BEFORE_SAVE, confirm, priority=10)
    kept = await bus.notify_cancellable(ModelEvent.BEFORE_SAVE, ["orders"], "save")
    handle.remove()
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from modelspine.core.logging import get_logger
from modelspine.core.settings import EngineSettings, get_settings
from modelspine.core.values import as_name_list, settle

__all__ = [
    "ModelEvent",
    "ListenerCallback",
    "Subscription",
    "Notification",
    "EventListener",
    "ListenerHandle",
    "ModelEventBus",
    "EventsFacade",
]

logger = get_logger(__name__)


class ModelEvent(str, Enum):
    """Events fired over a model's lifecycle."""

    DEFINE = "define"
    UNDEFINE = "undefine"
    REQUIRE = "require"
    VALIDATE = "validate"
    BEFORE_LOAD = "before_load"
    AFTER_LOAD = "after_load"
    BEFORE_SAVE = "before_save"
    AFTER_SAVE = "after_save"
    BEFORE_EXECUTE = "before_execute"
    AFTER_EXECUTE = "after_execute"

    @property
    def cancellable(self) -> bool:
        return self in _CANCELLABLE


_CANCELLABLE = frozenset(
    {
        ModelEvent.VALIDATE,
        ModelEvent.BEFORE_LOAD,
        ModelEvent.BEFORE_SAVE,
        ModelEvent.BEFORE_EXECUTE,
    }
)

ListenerCallback = Callable[[str, Any], Any]
Subscription = Union["ListenerHandle", list["ListenerHandle"]]


@dataclass(frozen=True)
class Notification:
    """One delivery to a listener without a callback."""

    event: ModelEvent
    model: str
    payload: Any = None


@dataclass
class EventListener:
    """Subscription record."""

    event: ModelEvent
    model: str | None
    priority: float
    callback: ListenerCallback | None
    sequence: int
    queue: asyncio.Queue[Notification] | None = field(default=None, repr=False)

    @property
    def sort_key(self) -> tuple[float, int]:
        return (-self.priority, self.sequence)

    async def deliver(self, model: str, payload: Any) -> Any:
        if self.callback is not None:
            return await settle(self.callback(model, payload))
        if self.queue is not None:
            self.queue.put_nowait(Notification(self.event, model, payload))
        return None


class ListenerHandle:
    """Returned by :meth:`ModelEventBus.subscribe`.

    A handle created without a callback records its notifications; iterate
    it to observe them::

        handle = engine.events.after_load(names="orders")
        async for note in handle:
            print(note.model, note.payload)
    """

    def __init__(self, bus: ModelEventBus, listener: EventListener) -> None:
        self._bus = bus
        self._listener = listener
        self._active = True

    @property
    def event(self) -> ModelEvent:
        return self._listener.event

    @property
    def model(self) -> str | None:
        return self._listener.model

    @property
    def priority(self) -> float:
        return self._listener.priority

    @property
    def active(self) -> bool:
        return self._active

    def remove(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if self._active:
            self._bus.unsubscribe(self._listener)
            self._active = False

    async def next(self) -> Notification:
        """Wait for the next notification of a callback-less handle."""
        if self._listener.queue is None:
            raise TypeError("handle has a callback; it does not record notifications")
        return await self._listener.queue.get()

    def pending(self) -> int:
        """Number of recorded notifications not yet consumed."""
        queue = self._listener.queue
        return queue.qsize() if queue is not None else 0

    def __aiter__(self) -> AsyncIterator[Notification]:
        return self

    async def __anext__(self) -> Notification:
        return await self.next()

    def __repr__(self) -> str:
        target = self.model if self.model is not None else "*"
        return f"ListenerHandle({self.event.value}, {target}, priority={self.priority})"


class ModelEventBus:
    """Per-model and all-models listener tables with priority dispatch."""

    def __init__(self, settings: EngineSettings | None = None) -> None:
        self._settings = settings
        self._named: dict[str, dict[ModelEvent, list[EventListener]]] = {}
        self._all: dict[ModelEvent, list[EventListener]] = {}
        self._sequence = itertools.count()
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def settings(self) -> EngineSettings:
        return self._settings if self._settings is not None else get_settings()

    # ── Subscriptions ─────────────────────────────────────────────

    def subscribe(
        self,
        event: ModelEvent | str,
        callback: ListenerCallback | None = None,
        *,
        model: str | None = None,
        priority: float = 0,
    ) -> ListenerHandle:
        """Subscribe to ``event`` for ``model`` (``None`` = all models).

        ``callback(model_name, payload)`` may return a value or an awaitable.
        Without a callback the handle records notifications instead.
        """
        event = ModelEvent(event)
        listener = EventListener(
            event=event,
            model=model,
            priority=priority,
            callback=callback,
            sequence=next(self._sequence),
            queue=asyncio.Queue() if callback is None else None,
        )
        if model is None:
            self._all.setdefault(event, []).append(listener)
        else:
            self._named.setdefault(model, {}).setdefault(event, []).append(listener)
        return ListenerHandle(self, listener)

    def unsubscribe(self, listener: EventListener) -> None:
        if listener.model is None:
            table = self._all.get(listener.event, [])
        else:
            table = self._named.get(listener.model, {}).get(listener.event, [])
        if listener in table:
            table.remove(listener)

    def discard_model(self, name: str) -> None:
        """Drop every listener attached to ``name``."""
        self._named.pop(name, None)

    def listeners_for(self, event: ModelEvent, name: str) -> list[EventListener]:
        """Named plus all-models listeners of ``event``, in dispatch order."""
        listeners = list(self._named.get(name, {}).get(event, ()))
        listeners.extend(self._all.get(event, ()))
        listeners.sort(key=lambda listener: listener.sort_key)
        return listeners

    def subscription_count(self, event: ModelEvent | None = None) -> int:
        tables = [self._all, *self._named.values()]
        return sum(
            len(listeners)
            for table in tables
            for key, listeners in table.items()
            if event is None or key == event
        )

    # ── Dispatch ──────────────────────────────────────────────────

    async def notify(
        self, event: ModelEvent, names: Iterable[str], payload: Any = None
    ) -> None:
        """Deliver a non-cancellable event to every matching listener."""
        deliveries = self._snapshot(event, names, cancellable=False)
        await self._deliver_all(event, deliveries, payload)

    async def notify_cancellable(
        self, event: ModelEvent, names: Iterable[str], payload: Any = None
    ) -> list[str]:
        """Run the gating chain of ``event`` for each model.

        Returns the names whose chain completed without a veto, in the
        order given. Completes once every model's chain has finished.
        """
        names = list(names)
        deliveries = self._snapshot(event, names, cancellable=True)
        chains = [(name, listeners) for name, listeners in deliveries if listeners]
        if not chains:
            return names
        if len(chains) == 1:
            name, listeners = chains[0]
            outcomes = [await self._run_chain(event, name, listeners, payload)]
        else:
            outcomes = await asyncio.gather(
                *(self._run_chain(event, name, listeners, payload) for name, listeners in chains)
            )
        vetoed = {name for (name, _), passed in zip(chains, outcomes) if not passed}
        return [name for name in names if name not in vetoed]

    def emit(self, event: ModelEvent, names: Iterable[str], payload: Any = None) -> None:
        """Fire a non-cancellable event from synchronous code.

        Listeners are captured immediately; delivery is scheduled on the
        running loop, or run to completion on a new loop if there is none.
        """
        deliveries = self._snapshot(event, names, cancellable=False)
        if not any(listeners for _, listeners in deliveries):
            return
        coro = self._deliver_all(event, deliveries, payload)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(coro)
            return
        task = loop.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for notifications scheduled by :meth:`emit`."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    # ── Internals ─────────────────────────────────────────────────

    def _snapshot(
        self, event: ModelEvent, names: Iterable[str], *, cancellable: bool
    ) -> list[tuple[str, list[EventListener]]]:
        deliveries = []
        log_events = self.settings.log_events
        for name in names:
            if log_events:
                logger.info(
                    "model_event.fired",
                    event_name=event.value,
                    model=name,
                    cancellable=cancellable,
                )
            deliveries.append((name, self.listeners_for(event, name)))
        return deliveries

    async def _deliver_all(
        self,
        event: ModelEvent,
        deliveries: list[tuple[str, list[EventListener]]],
        payload: Any,
    ) -> None:
        for name, listeners in deliveries:
            for listener in listeners:
                try:
                    await listener.deliver(name, payload)
                except Exception as e:
                    logger.warning(
                        "model_event_bus.listener_error",
                        event_name=event.value,
                        model=name,
                        priority=listener.priority,
                        error=str(e),
                    )

    async def _run_chain(
        self,
        event: ModelEvent,
        name: str,
        listeners: list[EventListener],
        payload: Any,
    ) -> bool:
        for listener in listeners:
            try:
                result = await listener.deliver(name, payload)
            except Exception as e:
                logger.warning(
                    "model_event_bus.listener_error",
                    event_name=event.value,
                    model=name,
                    priority=listener.priority,
                    error=str(e),
                    cancelled=True,
                )
                return False
            if result is False:
                logger.info(
                    "model_event_bus.cancelled",
                    event_name=event.value,
                    model=name,
                    priority=listener.priority,
                )
                return False
        return True


class EventsFacade:
    """Per-event subscription shortcuts bound to an orchestrator.

    Each method takes ``(callback=None, names=None, priority=0)``. ``names``
    may be ``None`` (all models), one name (returns one handle) or a list of
    names (returns one handle per name). Named subscriptions require the
    models to be registered.
    """

    def __init__(self, bus: ModelEventBus, verify_names: Callable[[list[str]], Any]) -> None:
        self._bus = bus
        self._verify_names = verify_names

    def subscribe(
        self,
        event: ModelEvent | str,
        callback: ListenerCallback | None = None,
        names: str | Iterable[str] | None = None,
        priority: float = 0,
    ) -> Subscription:
        if names is None:
            return self._bus.subscribe(event, callback, priority=priority)
        name_list = as_name_list(names)
        self._verify_names(name_list)
        handles = [
            self._bus.subscribe(event, callback, model=name, priority=priority)
            for name in name_list
        ]
        if isinstance(names, str):
            return handles[0]
        return handles

    def define(
        self,
        callback: ListenerCallback | None = None,
        names: str | Iterable[str] | None = None,
        priority: float = 0,
    ) -> Subscription:
        """Observe models being registered."""
        return self.subscribe(ModelEvent.DEFINE, callback, names, priority)

    def undefine(
        self,
        callback: ListenerCallback | None = None,
        names: str | Iterable[str] | None = None,
        priority: float = 0,
    ) -> Subscription:
        """Observe models about to be removed."""
        return self.subscribe(ModelEvent.UNDEFINE, callback, names, priority)

    def require(
        self,
        callback: ListenerCallback | None = None,
        names: str | Iterable[str] | None = None,
        priority: float = 0,
    ) -> Subscription:
        """Observe ``require`` calls before dependencies are resolved."""
        return self.subscribe(ModelEvent.REQUIRE, callback, names, priority)

    def validate(
        self,
        callback: ListenerCallback | None = None,
        names: str | Iterable[str] | None = None,
        priority: float = 0,
    ) -> Subscription:
        """Gate validation; returning ``False`` makes the model invalid."""
        return self.subscribe(ModelEvent.VALIDATE, callback, names, priority)

    def before_load(
        self,
        callback: ListenerCallback | None = None,
        names: str | Iterable[str] | None = None,
        priority: float = 0,
    ) -> Subscription:
        """Gate loading; returning ``False`` drops the model from the batch."""
        return self.subscribe(ModelEvent.BEFORE_LOAD, callback, names, priority)

    def after_load(
        self,
        callback: ListenerCallback | None = None,
        names: str | Iterable[str] | None = None,
        priority: float = 0,
    ) -> Subscription:
        """Observe models that finished loading."""
        return self.subscribe(ModelEvent.AFTER_LOAD, callback, names, priority)

    def before_save(
        self,
        callback: ListenerCallback | None = None,
        names: str | Iterable[str] | None = None,
        priority: float = 0,
    ) -> Subscription:
        """Gate saving; returning ``False`` cancels the model's save."""
        return self.subscribe(ModelEvent.BEFORE_SAVE, callback, names, priority)

    def after_save(
        self,
        callback: ListenerCallback | None = None,
        names: str | Iterable[str] | None = None,
        priority: float = 0,
    ) -> Subscription:
        """Observe models saved by a batch that succeeded."""
        return self.subscribe(ModelEvent.AFTER_SAVE, callback, names, priority)

    def before_execute(
        self,
        callback: ListenerCallback | None = None,
        names: str | Iterable[str] | None = None,
        priority: float = 0,
    ) -> Subscription:
        """Gate a named operation; the payload is the operation name."""
        return self.subscribe(ModelEvent.BEFORE_EXECUTE, callback, names, priority)

    def after_execute(
        self,
        callback: ListenerCallback | None = None,
        names: str | Iterable[str] | None = None,
        priority: float = 0,
    ) -> Subscription:
        """Observe models that completed a named operation."""
        return self.subscribe(ModelEvent.AFTER_EXECUTE, callback, names, priority)
