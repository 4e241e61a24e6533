"""Tests for multi-revision runs."""

import pytest

from conftest import COMMIT_A, COMMIT_C
from gitstamp.batch import BatchRunner, iter_specs
from gitstamp.gate import RequestGate
from gitstamp.manager import TimestampManager
from gitstamp.models import Action, ResultStatus


@pytest.fixture
def runner(fake_repo, memory_store, fake_tsa, config):
    gate = RequestGate(0)
    return BatchRunner(TimestampManager(fake_repo, memory_store, fake_tsa, config, gate=gate))


class TestIterSpecs:
    def test_strips_and_skips_blank_lines(self):
        lines = ["A\n", "  \n", "\tB  \n", "", "C"]
        assert list(iter_specs(lines)) == ["A", "B", "C"]

    def test_is_lazy(self):
        seen = []

        def lines():
            for line in ["A\n", "B\n"]:
                seen.append(line)
                yield line

        specs = iter_specs(lines())
        assert seen == []
        assert next(specs) == "A"
        assert seen == ["A\n"]


class TestBatchRunner:
    """Per-item isolation and the aggregate outcome."""

    def test_failure_does_not_stop_the_run(self, runner, memory_store):
        batch = runner.run(Action.CREATE, ["A", "bad", "C"])

        assert [r.status for r in batch.results] == [
            ResultStatus.STAMPED,
            ResultStatus.FAILED,
            ResultStatus.STAMPED,
        ]
        assert batch.ok is False
        assert [r.spec for r in batch.failures] == ["bad"]
        assert set(memory_store.notes) == {COMMIT_A, COMMIT_C}

    def test_failed_resolution_has_no_revision(self, runner):
        batch = runner.run(Action.VERIFY, ["bad"])
        result = batch.results[0]
        assert result.revision is None
        assert "bad" in result.error

    def test_all_ok(self, runner):
        batch = runner.run(Action.VERIFY, ["A", "B"])
        assert batch.ok is True
        assert all(r.status == ResultStatus.NO_TIMESTAMP for r in batch.results)

    def test_empty_input(self, runner):
        batch = runner.run(Action.VERIFY, iter([]))
        assert batch.results == []
        assert batch.ok is True

    def test_results_reported_as_they_arrive(self, runner):
        events = []

        def specs():
            for spec in ["A", "B"]:
                events.append(f"read {spec}")
                yield spec

        runner.run(
            Action.VERIFY,
            specs(),
            on_result=lambda result: events.append(f"done {result.spec}"),
        )
        assert events == ["read A", "done A", "read B", "done B"]

    def test_unexpected_error_is_recorded(self, runner, fake_tsa):
        fake_tsa.submit_error = RuntimeError("boom")
        batch = runner.run(Action.CREATE, ["A", "B"])

        assert [r.status for r in batch.failures] == [ResultStatus.FAILED] * 2
        first = batch.results[0]
        assert first.revision.id == COMMIT_A
        assert "boom" in first.error

    def test_same_revision_twice(self, runner, fake_tsa):
        batch = runner.run(Action.CREATE, ["A", "HEAD"])
        assert [r.status for r in batch.results] == [
            ResultStatus.STAMPED,
            ResultStatus.VERIFIED,
        ]
        assert len(fake_tsa.submissions) == 1

    def test_run_one(self, runner):
        result = runner.run_one(Action.REMOVE, "A")
        assert result.status == ResultStatus.SKIPPED
