"""Tests for ModelRegistry and define/undefine on the orchestrator."""

import pytest

from modelspine.core.errors import (
    DuplicateModelError,
    InvalidDefinitionError,
    InvalidNameError,
    UnknownModelError,
)
from modelspine.events import ModelEvent
from modelspine.models.definition import ModelDefinition
from modelspine.models.registry import UNDEFINED_STATE, ModelRegistry


@pytest.fixture
def registry():
    return ModelRegistry()


class TestCheckDefinition:
    @pytest.mark.parametrize("name", ["", None, 5])
    def test_invalid_names(self, registry, name):
        with pytest.raises(InvalidNameError):
            registry.check_definition(name, {})

    def test_none_definition(self, registry):
        with pytest.raises(InvalidDefinitionError):
            registry.check_definition("a", None)

    def test_wrong_type(self, registry):
        with pytest.raises(InvalidDefinitionError):
            registry.check_definition("a", ["load"])

    def test_mapping_coerced(self, registry):
        definition = registry.check_definition("a", {"save_priority": 1})
        assert isinstance(definition, ModelDefinition)

    def test_malformed_definition(self, registry):
        with pytest.raises(InvalidDefinitionError, match="load must be callable"):
            registry.check_definition("a", {"load": 1})

    def test_empty_definition_accepted(self, registry):
        assert registry.check_definition("a", {}) == ModelDefinition()

    def test_duplicate(self, registry):
        registry.add("a", ModelDefinition())
        with pytest.raises(DuplicateModelError):
            registry.check_definition("a", {})


class TestLookup:
    def test_get_unknown(self, registry):
        with pytest.raises(UnknownModelError):
            registry.get("missing")

    def test_require_defined(self, registry):
        registry.add("a", ModelDefinition())
        assert registry.require_defined("a") == ["a"]
        with pytest.raises(UnknownModelError):
            registry.require_defined(["a", "b"])

    def test_states_of_unknown_model(self, registry):
        assert registry.load_state("x") == UNDEFINED_STATE
        assert registry.save_state("x") == UNDEFINED_STATE
        assert registry.operation_state("x", "refresh") == UNDEFINED_STATE

    def test_names_in_registration_order(self, registry):
        for name in ("c", "a", "b"):
            registry.add(name, ModelDefinition())
        assert registry.names() == ["c", "a", "b"]
        assert len(registry) == 3


class TestOrchestratorRegistration:
    def test_define_starts_uninitialized(self, engine):
        engine.define("orders", {})
        assert engine.get_load_state("orders") == "uninitialized"
        assert engine.get_save_state("orders") == "unsaved"
        assert engine.get_operation_state("orders", "refresh") == "idle"

    def test_unknown_state_is_undefined(self, engine):
        assert engine.get_load_state("nope") == "undefined"

    def test_duplicate_define(self, engine):
        engine.define("orders", {})
        with pytest.raises(DuplicateModelError):
            engine.define("orders", {})

    def test_undefine_removes(self, engine):
        engine.define("orders", {})
        engine.undefine("orders")
        assert not engine.is_defined("orders")
        assert engine.get_load_state("orders") == "undefined"
        engine.define("orders", {})
        assert engine.is_defined("orders")

    def test_undefine_unknown_removes_nothing(self, engine):
        engine.define("a", {})
        with pytest.raises(UnknownModelError):
            engine.undefine(["a", "missing"])
        assert engine.is_defined("a")

    @pytest.mark.asyncio
    async def test_operations_on_undefined_model(self, engine):
        engine.define("a", {})
        engine.undefine("a")
        with pytest.raises(UnknownModelError, match="Model a not defined"):
            await engine.load("a")

    def test_named_subscription_requires_definition(self, engine):
        with pytest.raises(UnknownModelError):
            engine.events.after_load(lambda m, p: None, names="missing")

    @pytest.mark.asyncio
    async def test_define_and_undefine_events(self, engine):
        seen = []
        engine.events.define(lambda m, p: seen.append(("define", m)))
        engine.events.undefine(lambda m, p: seen.append(("undefine", m)))

        engine.define("a", {})
        engine.define("b", {})
        engine.undefine(["a", "b"])
        await engine.drain_events()

        assert seen == [("define", "a"), ("define", "b"), ("undefine", "a"), ("undefine", "b")]

    @pytest.mark.asyncio
    async def test_undefine_drops_named_listeners(self, engine):
        engine.define("a", {})
        engine.events.after_load(lambda m, p: None, names="a")
        assert engine.bus.subscription_count(ModelEvent.AFTER_LOAD) == 1
        engine.undefine("a")
        await engine.drain_events()
        assert engine.bus.subscription_count(ModelEvent.AFTER_LOAD) == 0

    def test_facade_list_of_names_returns_handles(self, engine):
        engine.define("a", {})
        engine.define("b", {})
        handles = engine.events.before_save(lambda m, p: True, names=["a", "b"])
        assert [h.model for h in handles] == ["a", "b"]

    @pytest.mark.parametrize("event", list(ModelEvent))
    def test_facade_shortcut_for_every_event(self, engine, event):
        engine.define("a", {})
        handle = getattr(engine.events, event.value)(lambda m, p: None, names="a", priority=3)
        assert handle.event is event
        assert handle.model == "a"
        assert handle.priority == 3
