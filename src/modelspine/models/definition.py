"""
Model definitions and per-model lifecycle state.

A :class:`ModelDefinition` is the immutable, caller-supplied description of
one named unit of application state: how to load it, save it, run other
named operations on it, and which checks gate those operations. A
:class:`ModelRecord` pairs a definition with the mutable state fields the
orchestrator drives.

Field laziness:
    Every gating field (``validate``, permissions, ``dependencies``,
    ``is_dirty``, priorities) is ``Lazy``: a literal, a zero-argument
    callable, or a zero-argument callable returning an awaitable. The value
    is resolved each time it is read. Operation fields (``load``, ``save``
    and entries of ``operations``) are called with the batch target instead.

Load state machine::

    UNINITIALIZED ──► LOADING ──► LOADED ──► RELOADING ──► LOADED
          ▲              │                       │
          └──────────────┘ (failure)             ▼ (failure)
                                              UNSTABLE ──► RELOADING

Save state machine::

    UNSAVED | SAVED ──► SAVING ──► SAVED
                           └─────► UNSAVED (failure)
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, MutableMapping, Sequence
from dataclasses import dataclass, field
from dataclasses import fields as dataclass_fields
from enum import Enum
from types import MappingProxyType
from typing import Any

from modelspine.core.values import Lazy

Target = MutableMapping[str, Any]
Operation = Callable[[Target], Any]


class LoadState(str, Enum):
    """Load lifecycle of a model."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    RELOADING = "reloading"
    UNSTABLE = "unstable"
    LOADED = "loaded"

    @property
    def in_flight(self) -> bool:
        return self in (LoadState.LOADING, LoadState.RELOADING)


class SaveState(str, Enum):
    """Save lifecycle of a model."""

    UNSAVED = "unsaved"
    SAVING = "saving"
    SAVED = "saved"


class OperationState(str, Enum):
    """Lifecycle of an arbitrary named operation run through ``execute``."""

    IDLE = "idle"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


_PERMISSION_SUFFIX = "_permission"
_PRIORITY_SUFFIX = "_priority"


@dataclass(frozen=True)
class ModelDefinition:
    """Caller-supplied behaviour of one model.

    Attributes:
        load: ``load(target)``; truthy or awaitable result means success
        save: ``save(target)``; same success contract as ``load``
        validate: Lazy bool; absent means always valid
        load_permission: Lazy bool gating ``load``
        save_permission: Lazy bool gating ``save``
        dependencies: Lazy model name or sequence of names loaded first by ``require``
        is_dirty: Lazy bool; absent means always dirty
        save_priority: Lazy number; lower saves first, absent saves last
        operations: Further named operations for ``execute``
        permissions: ``<operation> -> Lazy bool`` for named operations
        priorities: ``<operation> -> Lazy number`` for named operations
    """

    load: Operation | None = None
    save: Operation | None = None
    validate: Lazy[bool] | None = None
    load_permission: Lazy[bool] | None = None
    save_permission: Lazy[bool] | None = None
    dependencies: Lazy[str | Sequence[str]] | None = None
    is_dirty: Lazy[bool] | None = None
    save_priority: Lazy[float] | None = None
    operations: Mapping[str, Operation] = field(default_factory=dict)
    permissions: Mapping[str, Lazy[bool]] = field(default_factory=dict)
    priorities: Mapping[str, Lazy[float]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("operations", "permissions", "priorities"):
            object.__setattr__(self, name, MappingProxyType(dict(getattr(self, name))))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> ModelDefinition:
        """Build a definition from a flat mapping.

        Keys naming a dataclass field are used as-is. Any other key is a
        named operation, or the ``<operation>_permission`` /
        ``<operation>_priority`` companion of one::

            ModelDefinition.from_mapping({
                "load": load_orders,
                "refresh": refresh_orders,
                "refresh_permission": lambda: user.can_refresh,
                "refresh_priority": 2,
            })
        """
        known = {f.name for f in dataclass_fields(cls)}
        kwargs: dict[str, Any] = {}
        operations: dict[str, Any] = {}
        permissions: dict[str, Any] = {}
        priorities: dict[str, Any] = {}
        for key, value in values.items():
            if key in known:
                kwargs[key] = value
            elif key.endswith(_PERMISSION_SUFFIX):
                permissions[key[: -len(_PERMISSION_SUFFIX)]] = value
            elif key.endswith(_PRIORITY_SUFFIX):
                priorities[key[: -len(_PRIORITY_SUFFIX)]] = value
            else:
                operations[key] = value
        kwargs["operations"] = {**kwargs.get("operations", {}), **operations}
        kwargs["permissions"] = {**kwargs.get("permissions", {}), **permissions}
        kwargs["priorities"] = {**kwargs.get("priorities", {}), **priorities}
        return cls(**kwargs)

    def problem(self) -> str | None:
        """Describe why this definition is unusable, or ``None`` if it is fine."""
        if self.load is not None and not callable(self.load):
            return "load must be callable"
        if self.save is not None and not callable(self.save):
            return "save must be callable"
        for name, operation in self.operations.items():
            if name in ("load", "save"):
                return f"operation {name} must be given as the {name} field"
            if not callable(operation):
                return f"operation {name} must be callable"
        return None

    def operation(self, name: str) -> Operation | None:
        """The callable behind operation ``name``, if this model has one."""
        if name == "load":
            return self.load
        if name == "save":
            return self.save
        return self.operations.get(name)

    def permission_for(self, operation: str) -> Lazy[bool] | None:
        if operation == "load":
            return self.load_permission
        if operation == "save":
            return self.save_permission
        return self.permissions.get(operation)

    def priority_for(self, operation: str) -> Lazy[float] | None:
        if operation == "save":
            return self.save_priority
        return self.priorities.get(operation)


@dataclass
class ModelRecord:
    """A registered definition plus the state the orchestrator owns.

    ``inflight`` holds one future per running operation; concurrent callers
    wait on it instead of starting the operation a second time. ``data`` is
    what the last successful load returned.
    """

    name: str
    definition: ModelDefinition
    load_state: LoadState = LoadState.UNINITIALIZED
    save_state: SaveState = SaveState.UNSAVED
    operation_states: dict[str, OperationState] = field(default_factory=dict)
    inflight: dict[str, asyncio.Future[Any]] = field(default_factory=dict, repr=False)
    data: Any = field(default=None, repr=False)

    def operation_state(self, operation: str) -> OperationState:
        return self.operation_states.get(operation, OperationState.IDLE)


def merge_data(target: Target, data: Any) -> None:
    """Copy mapping data returned by a load into ``target``."""
    if isinstance(data, Mapping) and data is not target:
        target.update(data)


__all__ = [
    "Target",
    "Operation",
    "LoadState",
    "SaveState",
    "OperationState",
    "ModelDefinition",
    "ModelRecord",
    "merge_data",
]
