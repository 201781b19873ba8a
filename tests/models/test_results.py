"""Tests for BatchResult."""

from modelspine.models.results import BatchResult, OutcomeStatus


class TestBatchResult:
    def test_empty(self):
        batch = BatchResult(operation="save", requested=[])
        assert batch.result is None
        assert batch.ok
        assert batch.batch_id

    def test_groups_by_status(self):
        batch = BatchResult(operation="save", requested=["a", "b", "c", "d"])
        batch.record("a", OutcomeStatus.COMPLETED, result=1)
        batch.record("b", OutcomeStatus.CANCELLED)
        batch.record("c", OutcomeStatus.FAILED, exception=ValueError("bad"))
        batch.record("d", OutcomeStatus.COMPLETED, result=2)

        assert batch.completed == ["a", "d"]
        assert batch.cancelled == ["b"]
        assert batch.failed == ["c"]
        assert batch.result == 2
        assert batch.results == {"a": 1, "d": 2}
        assert not batch.ok

    def test_exception_fills_error(self):
        batch = BatchResult(operation="refresh", requested=["a"])
        outcome = batch.record("a", OutcomeStatus.FAILED, exception=RuntimeError("down"))
        assert outcome.error == "down"
        assert isinstance(outcome.exception, RuntimeError)

    def test_to_dict(self):
        batch = BatchResult(operation="save", requested=["a"])
        batch.record("a", OutcomeStatus.INVALID)
        data = batch.to_dict()
        assert data["operation"] == "save"
        assert data["invalid"] == ["a"]
        assert data["completed"] == []
