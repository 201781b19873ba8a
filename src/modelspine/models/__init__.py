"""modelspine.models -- model registration and lifecycle orchestration.

Architecture::

    definition.py    ModelDefinition, ModelRecord and the state enums
    registry.py      Name -> record table with validation
    resolver.py      Transitive dependency loading for require()
    results.py       BatchResult returned by save() and execute()
    orchestrator.py  ModelOrchestrator, the public engine
"""

from modelspine.models.definition import (
    LoadState,
    ModelDefinition,
    ModelRecord,
    OperationState,
    SaveState,
    Target,
)
from modelspine.models.orchestrator import ModelOrchestrator
from modelspine.models.registry import UNDEFINED_STATE, ModelRegistry
from modelspine.models.resolver import DependencyResolver
from modelspine.models.results import BatchResult, ModelOutcome, OutcomeStatus

__all__ = [
    "LoadState",
    "ModelDefinition",
    "ModelRecord",
    "OperationState",
    "SaveState",
    "Target",
    "ModelOrchestrator",
    "UNDEFINED_STATE",
    "ModelRegistry",
    "DependencyResolver",
    "BatchResult",
    "ModelOutcome",
    "OutcomeStatus",
]
