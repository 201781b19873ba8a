"""modelspine.core -- cross-cutting primitives of the engine.

Architecture::

    errors.py      Structured error hierarchy (ModelSpineError and subclasses)
    logging.py     Structured logging (structlog)
    settings.py    EngineSettings behaviour toggles (pydantic-settings)
    values.py      Lazy value resolution for definition fields
"""

from modelspine.core.errors import (
    CyclicDependencyError,
    DuplicateModelError,
    ErrorCategory,
    ErrorContext,
    ExecuteFailedError,
    ExecuteRejectedNotLoadedError,
    InvalidDefinitionError,
    InvalidNameError,
    LoadFailedError,
    ModelSpineError,
    PermissionDeniedError,
    SaveFailedError,
    SaveRejectedNotLoadedError,
    UndefinedDependencyError,
    UnknownModelError,
)
from modelspine.core.logging import configure_logging, get_logger
from modelspine.core.settings import EngineSettings, clear_settings_cache, get_settings

__all__ = [
    "CyclicDependencyError",
    "DuplicateModelError",
    "ErrorCategory",
    "ErrorContext",
    "ExecuteFailedError",
    "ExecuteRejectedNotLoadedError",
    "InvalidDefinitionError",
    "InvalidNameError",
    "LoadFailedError",
    "ModelSpineError",
    "PermissionDeniedError",
    "SaveFailedError",
    "SaveRejectedNotLoadedError",
    "UndefinedDependencyError",
    "UnknownModelError",
    "configure_logging",
    "get_logger",
    "EngineSettings",
    "clear_settings_cache",
    "get_settings",
]
