"""Engine configuration.

The orchestrator reads its behaviour toggles from an :class:`EngineSettings`
instance on every call, so flipping a field at runtime affects subsequent
operations without rebuilding anything.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Assignments are validated too, not just init
    - **Environment-driven:** ``MODELSPINE_*`` env vars and ``.env`` files
    - **One default instance:** :func:`get_settings` is cached process-wide
    - **Per-engine override:** pass an instance to ``ModelOrchestrator``

Examples:
    >>> from modelspine.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.throw_on_permission_violation = False  # skip silently from now on

Tags:
    settings, configuration, pydantic, environment, modelspine
"""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Behaviour toggles of the model orchestration engine.

    All fields can be set via ``MODELSPINE_*`` environment variables (e.g.
    ``MODELSPINE_PARALLEL_SAVE=false``).
    """

    model_config = SettingsConfigDict(
        env_prefix="MODELSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        validate_assignment=True,
    )

    # ── Permissions ──────────────────────────────────────────────
    throw_on_permission_violation: bool = Field(
        default=True,
        description="Raise PermissionDeniedError instead of silently skipping the model",
    )

    # ── Dependencies ─────────────────────────────────────────────
    throw_on_undefined_dependencies: bool = Field(
        default=True,
        description="Raise UndefinedDependencyError instead of ignoring the dependency",
    )

    # ── Unloaded models ──────────────────────────────────────────
    allow_unloaded_model_save: bool = Field(default=False)
    throw_on_unloaded_model_save: bool = Field(default=True)
    allow_unloaded_model_execute: bool = Field(default=True)
    throw_on_unloaded_model_execute: bool = Field(default=True)

    # ── Batch iteration ──────────────────────────────────────────
    parallel_load: bool = Field(default=True)
    parallel_save: bool = Field(default=True)
    parallel_execute: bool = Field(default=True)

    # ── Logging ──────────────────────────────────────────────────
    log_events: bool = Field(default=False, description="Log every fired model event")
    log_level: str = Field(default="INFO")
    log_format: Literal["console", "json"] = Field(default="console")

    def allows_unloaded(self, operation: str) -> bool:
        """Whether ``operation`` may run on models that are not loaded."""
        if operation == "save":
            return self.allow_unloaded_model_save
        return self.allow_unloaded_model_execute

    def throws_on_unloaded(self, operation: str) -> bool:
        """Whether a disallowed unloaded model raises rather than being filtered out."""
        if operation == "save":
            return self.throw_on_unloaded_model_save
        return self.throw_on_unloaded_model_execute

    def runs_parallel(self, operation: str) -> bool:
        """Whether batch items of ``operation`` are processed concurrently."""
        if operation == "load":
            return self.parallel_load
        if operation == "save":
            return self.parallel_save
        return self.parallel_execute


# ── Settings factory with caching ────────────────────────────────────────

_settings: EngineSettings | None = None


def get_settings(*, _force_reload: bool = False) -> EngineSettings:
    """Return the process-wide :class:`EngineSettings` instance."""
    global _settings
    if _settings is None or _force_reload:
        _settings = EngineSettings()
    return _settings


def clear_settings_cache() -> None:
    """Clear the cached settings (primarily for testing)."""
    global _settings
    _settings = None


__all__ = ["EngineSettings", "get_settings", "clear_settings_cache"]
