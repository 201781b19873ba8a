"""Model registry for registering and looking up model definitions.

The registry owns the name -> :class:`ModelRecord` table of one
orchestrator. It validates definitions, rejects duplicates, and answers
state queries. Lifecycle state itself is only ever changed by the
orchestrator.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from modelspine.core.errors import (
    DuplicateModelError,
    InvalidDefinitionError,
    InvalidNameError,
    UnknownModelError,
)
from modelspine.core.logging import get_logger
from modelspine.core.values import as_name_list
from modelspine.models.definition import ModelDefinition, ModelRecord

logger = get_logger(__name__)

UNDEFINED_STATE = "undefined"


class ModelRegistry:
    """Name -> record table with validation."""

    def __init__(self) -> None:
        self._records: dict[str, ModelRecord] = {}

    def check_definition(
        self, name: Any, definition: ModelDefinition | Mapping[str, Any] | None
    ) -> ModelDefinition:
        """Validate a prospective registration without storing it.

        Returns the definition as a :class:`ModelDefinition`.

        Raises:
            InvalidNameError: name is empty or not a string
            InvalidDefinitionError: definition is ``None`` or malformed
            DuplicateModelError: name is already registered
        """
        if not isinstance(name, str) or not name:
            raise InvalidNameError(name)
        if definition is None:
            raise InvalidDefinitionError(name)
        if isinstance(definition, Mapping):
            try:
                definition = ModelDefinition.from_mapping(definition)
            except TypeError as exc:
                raise InvalidDefinitionError(name, str(exc)) from exc
        if not isinstance(definition, ModelDefinition):
            raise InvalidDefinitionError(
                name, f"definition must be a ModelDefinition or mapping, got {type(definition).__name__}"
            )
        problem = definition.problem()
        if problem:
            raise InvalidDefinitionError(name, problem)
        if name in self._records:
            raise DuplicateModelError(name)
        return definition

    def add(self, name: str, definition: ModelDefinition) -> ModelRecord:
        """Store a checked definition with fresh lifecycle state."""
        if name in self._records:
            raise DuplicateModelError(name)
        record = ModelRecord(name=name, definition=definition)
        self._records[name] = record
        logger.debug("model_registry.defined", model=name)
        return record

    def remove(self, name: str) -> ModelRecord:
        """Drop a record permanently."""
        record = self.get(name)
        del self._records[name]
        logger.debug("model_registry.undefined", model=name)
        return record

    def get(self, name: str) -> ModelRecord:
        try:
            return self._records[name]
        except KeyError:
            raise UnknownModelError(name) from None

    def require_defined(self, names: str | Iterable[str] | None) -> list[str]:
        """Normalise ``names`` to a list, raising on the first unknown one."""
        names = as_name_list(names)
        for name in names:
            if name not in self._records:
                raise UnknownModelError(name)
        return names

    def names(self) -> list[str]:
        """Registered names in registration order."""
        return list(self._records)

    # ── State queries ─────────────────────────────────────────────

    def load_state(self, name: str) -> str:
        record = self._records.get(name)
        return record.load_state.value if record else UNDEFINED_STATE

    def save_state(self, name: str) -> str:
        record = self._records.get(name)
        return record.save_state.value if record else UNDEFINED_STATE

    def operation_state(self, name: str, operation: str) -> str:
        record = self._records.get(name)
        if record is None:
            return UNDEFINED_STATE
        if operation == "load":
            return record.load_state.value
        if operation == "save":
            return record.save_state.value
        return record.operation_state(operation).value

    def __contains__(self, name: object) -> bool:
        return name in self._records

    def __len__(self) -> int:
        return len(self._records)


__all__ = ["ModelRegistry", "UNDEFINED_STATE"]
