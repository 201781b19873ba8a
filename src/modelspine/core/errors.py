"""
Structured error types for the model orchestration engine.

Every failure the engine can report is a :class:`ModelSpineError` subclass
carrying a category, a retry hint, structured context (which model, which
operation, which event) and an optional chained cause.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure mode of the engine
    - **Explicit Retry Semantics:** Each error knows if a caller may retry
    - **Rich Context:** Errors carry the model and operation they concern
    - **Error Chaining:** Preserve the exception raised by a model callback

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       ModelSpineError                            │
        │  (category, retryable, context, cause)                           │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  DefinitionError        RegistryError        PermissionDenied    │
        │  (DEFINITION)           (REGISTRY)           (AUTH)              │
        │       │                      │                                   │
        │  InvalidName            DuplicateModel                           │
        │  InvalidDefinition      UnknownModel                             │
        │                                                                  │
        │  DependencyError        LifecycleError                           │
        │  (DEPENDENCY)           (LIFECYCLE)                              │
        │       │                      │                                   │
        │  UndefinedDependency    LoadFailed / SaveFailed / ExecuteFailed  │
        │  CyclicDependency       SaveRejectedNotLoaded                    │
        │                         ExecuteRejectedNotLoaded                 │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = UnknownModelError("orders")
    >>> error.category
    <ErrorCategory.REGISTRY: 'REGISTRY'>
    >>> error.context.model
    'orders'

    >>> try:
    ...     raise ConnectionError("socket closed")
    ... except ConnectionError as e:
    ...     error = LoadFailedError("orders", cause=e)
    >>> error.retryable
    True

Guardrails:
    ❌ DON'T: Raise plain strings or generic Exception from the engine
    ✅ DO: Raise the matching ModelSpineError subclass

    ❌ DON'T: Swallow the exception raised by a load/save callback
    ✅ DO: Pass it as cause= so the traceback is preserved

Tags:
    error-handling, exception-hierarchy, error-context, modelspine
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories for classification and routing.

    Attributes:
        DEFINITION: Malformed model name or definition
        REGISTRY: Registration conflicts and lookups of unknown models
        AUTH: Permission checks that denied an operation
        DEPENDENCY: Unresolvable or circular model dependencies
        LIFECYCLE: Load, save and execute failures
        CONFIG: Invalid engine configuration
        INTERNAL: Bugs, unexpected state
        UNKNOWN: Uncategorized errors
    """

    DEFINITION = "DEFINITION"
    REGISTRY = "REGISTRY"
    AUTH = "AUTH"
    DEPENDENCY = "DEPENDENCY"
    LIFECYCLE = "LIFECYCLE"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        model: Name of the model the error concerns
        operation: Lifecycle operation (``load``, ``save`` or an execute name)
        event: Event being dispatched when the error occurred
        metadata: Additional key-value pairs
    """

    model: str | None = None
    operation: str | None = None
    event: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["model", "operation", "event"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class ModelSpineError(Exception):
    """
    Base exception for all engine errors.

    Subclasses set ``default_category`` and ``default_retryable`` to give
    sensible defaults for their failure mode.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> ModelSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise LoadFailedError("orders").with_context(attempt=2)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# DEFINITION ERRORS
# =============================================================================


class DefinitionError(ModelSpineError):
    """Model name or definition is malformed. Never retryable."""

    default_category = ErrorCategory.DEFINITION


class InvalidNameError(DefinitionError):
    """Model name is empty or not a string."""

    def __init__(self, name: Any):
        self.name = name
        super().__init__(
            f"Model name must be a non-empty string, got {name!r}",
            context=ErrorContext(metadata={"name": repr(name)}),
        )


class InvalidDefinitionError(DefinitionError):
    """Model definition is missing or cannot be interpreted."""

    def __init__(self, name: str, reason: str = "definition is not valid"):
        self.name = name
        self.reason = reason
        super().__init__(
            f"Model {name} {reason}",
            context=ErrorContext(model=name),
        )


# =============================================================================
# REGISTRY ERRORS
# =============================================================================


class RegistryError(ModelSpineError):
    """Registry lookup or registration conflict."""

    default_category = ErrorCategory.REGISTRY


class DuplicateModelError(RegistryError):
    """A model with this name is already registered."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Model {name} is already defined", context=ErrorContext(model=name))


class UnknownModelError(RegistryError):
    """Model name is not registered (never defined, or undefined)."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Model {name} not defined", context=ErrorContext(model=name))


# =============================================================================
# PERMISSION ERRORS
# =============================================================================


class PermissionDeniedError(ModelSpineError):
    """A model's permission check denied the requested operation."""

    default_category = ErrorCategory.AUTH

    def __init__(self, name: str, operation: str, *, cause: BaseException | None = None):
        self.name = name
        self.operation = operation
        super().__init__(
            f"Permission denied for {operation} on model {name}",
            context=ErrorContext(model=name, operation=operation),
            cause=cause,
        )


# =============================================================================
# DEPENDENCY ERRORS
# =============================================================================


class DependencyError(ModelSpineError):
    """Dependency graph cannot be resolved."""

    default_category = ErrorCategory.DEPENDENCY


class UndefinedDependencyError(DependencyError):
    """A model declares a dependency on a name that is not registered."""

    def __init__(self, name: str, dependency: str):
        self.name = name
        self.dependency = dependency
        super().__init__(
            f"Model {name} dependency {dependency} not defined",
            context=ErrorContext(model=name, metadata={"dependency": dependency}),
        )


class CyclicDependencyError(DependencyError):
    """The dependency chain of a model leads back to itself."""

    def __init__(self, cycle: Iterable[str]):
        self.cycle = list(cycle)
        super().__init__(
            f"Cyclic dependency detected: {' -> '.join(self.cycle)}",
            context=ErrorContext(model=self.cycle[0] if self.cycle else None),
        )


# =============================================================================
# LIFECYCLE ERRORS
# =============================================================================


class LifecycleError(ModelSpineError):
    """A load, save or execute call did not complete."""

    default_category = ErrorCategory.LIFECYCLE
    default_retryable = True


class LoadFailedError(LifecycleError):
    """A model's load function failed or returned no result."""

    def __init__(self, name: str, reason: str | None = None, *, cause: BaseException | None = None):
        self.name = name
        message = f"Load failed for model {name}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, context=ErrorContext(model=name, operation="load"), cause=cause)


class ExecuteFailedError(LifecycleError):
    """A model's named operation failed or returned no result."""

    def __init__(self, name: str, operation: str, *, cause: BaseException | None = None):
        self.name = name
        self.operation = operation
        super().__init__(
            f"Execute {operation} failed for model {name}",
            context=ErrorContext(model=name, operation=operation),
            cause=cause,
        )


class SaveFailedError(LifecycleError):
    """
    One or more models of a save batch failed.

    Raised once per batch after every model has finished. ``failures`` maps
    each failed model to the exception its save raised (or ``None`` when it
    returned a falsy result). ``result`` is the partial batch outcome.
    """

    def __init__(
        self,
        failures: Mapping[str, BaseException | None],
        *,
        result: Any = None,
    ):
        self.failures = dict(failures)
        self.result = result
        names = ", ".join(self.failures)
        cause = next((exc for exc in self.failures.values() if exc is not None), None)
        super().__init__(
            f"Save failed for model {names}",
            context=ErrorContext(operation="save", metadata={"models": list(self.failures)}),
            cause=cause,
        )


class SaveRejectedNotLoadedError(LifecycleError):
    """Save requested for a model that is not in the ``loaded`` state."""

    default_retryable = False

    def __init__(self, name: str, load_state: str):
        self.name = name
        self.load_state = load_state
        super().__init__(
            f"Unable to save model {name}, model is not in a loaded state ({load_state})",
            context=ErrorContext(model=name, operation="save"),
        )


class ExecuteRejectedNotLoadedError(LifecycleError):
    """Execute requested for a model that is not in the ``loaded`` state."""

    default_retryable = False

    def __init__(self, name: str, operation: str, load_state: str):
        self.name = name
        self.operation = operation
        self.load_state = load_state
        super().__init__(
            f"Unable to execute {operation} on model {name}, "
            f"model is not in a loaded state ({load_state})",
            context=ErrorContext(model=name, operation=operation),
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is worth retrying by the caller."""
    if isinstance(error, ModelSpineError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, ModelSpineError):
        return error.category
    if isinstance(error, PermissionError):
        return ErrorCategory.AUTH
    if isinstance(error, (TypeError, ValueError)):
        return ErrorCategory.DEFINITION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "ModelSpineError",
    # Definition
    "DefinitionError",
    "InvalidNameError",
    "InvalidDefinitionError",
    # Registry
    "RegistryError",
    "DuplicateModelError",
    "UnknownModelError",
    # Permission
    "PermissionDeniedError",
    # Dependency
    "DependencyError",
    "UndefinedDependencyError",
    "CyclicDependencyError",
    # Lifecycle
    "LifecycleError",
    "LoadFailedError",
    "ExecuteFailedError",
    "SaveFailedError",
    "SaveRejectedNotLoadedError",
    "ExecuteRejectedNotLoadedError",
    # Utilities
    "is_retryable",
    "categorize_error",
]
