"""Tests for ModelOrchestrator.save() and save_all()."""

import asyncio

import pytest

from modelspine.core.errors import (
    PermissionDeniedError,
    SaveFailedError,
    SaveRejectedNotLoadedError,
)
from modelspine.models.results import OutcomeStatus


async def define_loaded(engine, calls, name, **fields):
    """Define a model with a loader and saver, then load it."""
    definition = {"load": calls.loader(name), "save": calls.operation("save", name, result=name)}
    definition.update(fields)
    engine.define(name, definition)
    await engine.load(name)
    calls.log.clear()


class TestSave:
    @pytest.mark.asyncio
    async def test_saves_and_reports(self, engine, calls):
        await define_loaded(engine, calls, "a")

        result = await engine.save("a")

        assert calls.log == ["save:a"]
        assert result.completed == ["a"]
        assert result.result == "a"
        assert result.ok
        assert engine.get_save_state("a") == "saved"

    @pytest.mark.asyncio
    async def test_target_passed_to_save(self, engine):
        received = []

        async def save(target):
            received.append(target)
            return True

        engine.settings.allow_unloaded_model_save = True
        engine.define("a", {"save": save})
        target = {"draft": 1}
        await engine.save("a", target)
        assert received == [target]

    @pytest.mark.asyncio
    async def test_result_is_last_completed(self, engine, calls):
        engine.settings.parallel_save = False
        await define_loaded(engine, calls, "a")
        await define_loaded(engine, calls, "b")

        result = await engine.save(["a", "b"])

        assert calls.log == ["save:b", "save:a"]
        assert result.result == "a"
        assert result.results == {"b": "b", "a": "a"}

    @pytest.mark.asyncio
    async def test_priority_order(self, engine, calls):
        engine.settings.parallel_save = False
        await define_loaded(engine, calls, "a", save_priority=2)
        await define_loaded(engine, calls, "b", save_priority=lambda: 1)
        await define_loaded(engine, calls, "c")
        await define_loaded(engine, calls, "d", save_priority=2)

        await engine.save(["a", "b", "c", "d"])

        # reversed batch is d, c, b, a; stable sort keeps d before a
        assert calls.log == ["save:b", "save:d", "save:a", "save:c"]

    @pytest.mark.asyncio
    async def test_clean_models_excluded(self, engine, calls):
        await define_loaded(engine, calls, "a", is_dirty=False)
        await define_loaded(engine, calls, "b", is_dirty=lambda: True)

        result = await engine.save(["a", "b"])

        assert calls.log == ["save:b"]
        assert result.requested == ["b"]

    @pytest.mark.asyncio
    async def test_models_without_save_ignored(self, engine, calls):
        engine.define("view", {"load": calls.loader("view")})
        result = await engine.save("view")
        assert result.requested == []
        assert result.result is None

    @pytest.mark.asyncio
    async def test_save_all(self, engine, calls):
        await define_loaded(engine, calls, "a")
        await define_loaded(engine, calls, "b")

        result = await engine.save_all()
        assert sorted(result.completed) == ["a", "b"]


class TestUnloadedModels:
    @pytest.mark.asyncio
    async def test_rejected_before_listeners(self, engine, calls):
        before = []
        engine.define("a", {"load": calls.loader("a"), "save": calls.operation("save", "a")})
        engine.events.before_save(lambda m, p: before.append(m))

        with pytest.raises(SaveRejectedNotLoadedError) as exc_info:
            await engine.save("a")

        assert exc_info.value.load_state == "uninitialized"
        assert before == []
        assert calls.log == []

    @pytest.mark.asyncio
    async def test_filtered_when_not_throwing(self, engine, calls):
        engine.settings.throw_on_unloaded_model_save = False
        engine.define("a", {"load": calls.loader("a"), "save": calls.operation("save", "a")})
        await define_loaded(engine, calls, "b")

        result = await engine.save(["a", "b"])

        assert calls.log == ["save:b"]
        assert result.requested == ["b"]

    @pytest.mark.asyncio
    async def test_allowed_when_configured(self, engine, calls):
        engine.settings.allow_unloaded_model_save = True
        engine.define("a", {"save": calls.operation("save", "a")})
        await engine.save("a")
        assert calls.log == ["save:a"]


class TestSaveGating:
    @pytest.mark.asyncio
    async def test_before_save_veto(self, engine, calls):
        after = []
        await define_loaded(engine, calls, "a")
        await define_loaded(engine, calls, "b")
        engine.events.before_save(lambda m, p: False, names="a")
        engine.events.after_save(lambda m, p: after.append((m, p)))

        result = await engine.save(["a", "b"])

        assert result.cancelled == ["a"]
        assert result.completed == ["b"]
        assert after == [("b", "save")]
        assert engine.get_save_state("a") == "unsaved"

    @pytest.mark.asyncio
    async def test_invalid_model_not_saved(self, engine, calls):
        await define_loaded(engine, calls, "a", validate=False)

        result = await engine.save("a")

        assert calls.log == []
        assert result.invalid == ["a"]
        assert engine.get_save_state("a") == "unsaved"

    @pytest.mark.asyncio
    async def test_permission_denied_raises(self, engine, calls):
        await define_loaded(engine, calls, "a", save_permission=False)
        with pytest.raises(PermissionDeniedError):
            await engine.save("a")

    @pytest.mark.asyncio
    async def test_permission_denied_skips(self, engine, calls):
        engine.settings.throw_on_permission_violation = False
        await define_loaded(engine, calls, "a", save_permission=False)

        result = await engine.save("a")

        assert result.skipped == ["a"]
        assert calls.log == []


    @pytest.mark.asyncio
    async def test_all_before_save_chains_finish_before_any_save(self, engine, calls):
        for name in ("a", "b", "c"):
            await define_loaded(engine, calls, name)

        async def confirm(model, payload):
            await asyncio.sleep(0.01 if model == "a" else 0)
            calls.log.append(f"before:{model}")
            return True

        engine.events.before_save(confirm)
        await engine.save(["a", "b", "c"])

        first_save = next(i for i, entry in enumerate(calls.log) if entry.startswith("save:"))
        assert sorted(calls.log[:first_save]) == ["before:a", "before:b", "before:c"]
        assert sorted(calls.log[first_save:]) == ["save:a", "save:b", "save:c"]


class TestSaveFailures:
    @pytest.mark.asyncio
    async def test_whole_batch_runs_then_raises(self, engine, calls):
        after = []
        await define_loaded(engine, calls, "a", save=calls.failing("save", "a"))
        await define_loaded(engine, calls, "b")
        engine.events.after_save(lambda m, p: after.append(m))

        with pytest.raises(SaveFailedError) as exc_info:
            await engine.save(["a", "b"])

        err = exc_info.value
        assert list(err.failures) == ["a"]
        assert isinstance(err.failures["a"], RuntimeError)
        assert err.result.completed == ["b"]
        assert engine.get_save_state("a") == "unsaved"
        assert engine.get_save_state("b") == "saved"
        assert after == []

    @pytest.mark.asyncio
    async def test_falsy_result_is_failure(self, engine, calls):
        await define_loaded(engine, calls, "a", save=lambda target: 0)

        with pytest.raises(SaveFailedError) as exc_info:
            await engine.save("a")
        assert exc_info.value.failures == {"a": None}


class TestConcurrentSaves:
    @pytest.mark.asyncio
    async def test_save_invoked_once(self, engine, calls):
        await define_loaded(engine, calls, "a", save=calls.operation("save", "a", delay=0.01))

        first, second = await asyncio.gather(engine.save("a"), engine.save("a"))

        assert calls.log == ["save:a"]
        assert first.completed == ["a"]
        assert second.completed == ["a"]
        assert second.outcomes[0].status is OutcomeStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_saving_state_visible(self, engine, calls):
        seen = []

        async def save(target):
            seen.append(engine.get_save_state("a"))
            return True

        await define_loaded(engine, calls, "a", save=save)
        await engine.save("a")
        assert seen == ["saving"]

    @pytest.mark.asyncio
    async def test_cancelled_saver_task_fails_waiters(self, engine, calls):
        started = asyncio.Event()

        async def save(target):
            started.set()
            await asyncio.sleep(10)
            return True

        await define_loaded(engine, calls, "a", save=save)
        first = asyncio.create_task(engine.save("a"))
        await started.wait()
        second = asyncio.create_task(engine.save("a"))
        await asyncio.sleep(0.01)

        first.cancel()
        results = await asyncio.gather(first, second, return_exceptions=True)

        assert isinstance(results[0], asyncio.CancelledError)
        assert isinstance(results[1], SaveFailedError)
        assert not second.cancelled()
        joined = results[1].failures["a"]
        assert isinstance(joined, SaveFailedError)
        assert isinstance(joined.failures["a"], asyncio.CancelledError)
        assert results[1].result.outcomes[0].status is OutcomeStatus.FAILED
        assert engine.get_save_state("a") == "unsaved"
