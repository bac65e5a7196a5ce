"""Tests de SqlConsumerRepository, esquema y retry."""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError

from consumer_runtime.errors import BatchExecutionError
from consumer_runtime.intervals import AggregationInterval
from consumer_runtime.models import ConsumerRuntime, ConsumerRuntimeAggregate, ConsumerState, PinState
from consumer_runtime.persistence import (
    CreateRuntime,
    CreateState,
    MarkRuntimeAggregated,
    UpsertAggregate,
    ensure_schema,
)
from consumer_runtime.persistence.retry import call_with_retry, is_locked_error

from conftest import utc_ms

H = AggregationInterval.HOURLY


def _state(channel, at, state):
    return ConsumerState(channel_id=channel, changed_at=at, state=state)


class TestSchema:

    def test_ensure_schema_is_idempotent(self, engine):
        ensure_schema(engine)
        ensure_schema(engine)
        with engine.connect() as conn:
            names = {
                r[0] for r in conn.execute(text("SELECT name FROM sqlite_master WHERE type = 'table'"))
            }
        assert {"consumer_states", "consumer_runtimes", "consumer_runtime_aggregates"} <= names

    def test_iso_columns_are_filled(self, repository, engine):
        repository.create_state(_state("burner", utc_ms(2024, 1, 15, 10), PinState.HIGH))
        with engine.connect() as conn:
            iso = conn.execute(text("SELECT changed_iso FROM consumer_states")).scalar()
        assert iso.startswith("2024-01-15T10:00:00.000")


class TestStates:

    def test_latest_state_before_is_strict(self, repository):
        repository.create_state(_state("burner", 1000, PinState.HIGH))
        repository.create_state(_state("burner", 2000, PinState.LOW))

        assert repository.get_latest_state_before("burner", 2000) == _state("burner", 1000, PinState.HIGH)
        assert repository.get_latest_state_before("burner", 2001) == _state("burner", 2000, PinState.LOW)
        assert repository.get_latest_state_before("burner", 1000) is None
        assert repository.get_latest_state_before("other", 5000) is None

    def test_duplicate_state_key_rejected(self, repository):
        repository.create_state(_state("burner", 1000, PinState.HIGH))
        with pytest.raises(IntegrityError):
            repository.create_state(_state("burner", 1000, PinState.LOW))

    def test_first_state_and_ranges(self, repository):
        repository.create_state(_state("b", 3000, PinState.HIGH))
        repository.create_state(_state("a", 1000, PinState.HIGH))
        repository.create_state(_state("a", 2000, PinState.LOW))

        assert repository.get_first_state() == _state("a", 1000, PinState.HIGH)
        assert [s.changed_at for s in repository.list_states(from_ts=1000, to_ts=3000)] == [1000, 2000]
        assert [s.channel_id for s in repository.list_states("b")] == ["b"]

    def test_count_open_before_uses_latest_state(self, repository):
        repository.create_state(_state("a", 1000, PinState.HIGH))
        repository.create_state(_state("a", 2000, PinState.LOW))
        repository.create_state(_state("b", 3000, PinState.HIGH))

        assert repository.count_open_before(3000) == 0
        assert repository.count_open_before(3001) == 1


class TestRuntimes:

    def test_unaggregated_ordered_and_limited(self, repository):
        for start in (5000, 1000, 3000):
            repository.create_runtime(ConsumerRuntime.between("burner", start, start + 1000))

        runtimes = repository.get_unaggregated_runtimes("burner", 2)

        assert [r.started_at for r in runtimes] == [1000, 3000]
        assert repository.count_unaggregated("burner") == 3
        assert repository.list_channels_with_unaggregated() == ["burner"]

    def test_count_unaggregated_before(self, repository):
        repository.create_runtime(ConsumerRuntime.between("a", 1000, 2000))
        repository.create_runtime(ConsumerRuntime.between("b", 5000, 6000))

        assert repository.count_unaggregated_before(1000) == 0
        assert repository.count_unaggregated_before(5000) == 1
        assert repository.count_unaggregated_before(5001) == 2

    def test_stop_before_start_rejected(self, repository):
        with pytest.raises(IntegrityError):
            repository.create_runtime(ConsumerRuntime("burner", 5000, 1000, 0))


class TestRunBatch:

    def test_all_operations_commit_together(self, repository):
        runtime = ConsumerRuntime.between("burner", 0, 60000)
        repository.run_batch([
            CreateState(_state("burner", 0, PinState.HIGH)),
            CreateRuntime(runtime),
            UpsertAggregate("burner", 0, H, 60),
            MarkRuntimeAggregated("burner", 0),
        ])

        assert repository.get_aggregate("burner", 0, H) == ConsumerRuntimeAggregate("burner", 0, H, 60)
        assert repository.count_unaggregated("burner") == 0

    def test_upsert_adds_delta(self, repository):
        repository.run_batch([UpsertAggregate("burner", 0, H, 60)])
        repository.run_batch([UpsertAggregate("burner", 0, H, 15)])

        assert repository.get_aggregate("burner", 0, H).duration_seconds == 75

    def test_same_bucket_different_interval_are_separate(self, repository):
        repository.run_batch([
            UpsertAggregate("burner", 0, H, 60),
            UpsertAggregate("burner", 0, AggregationInterval.DAILY, 60),
        ])
        assert len(repository.list_aggregates("burner")) == 2

    def test_failure_rolls_back_everything(self, repository):
        with pytest.raises(BatchExecutionError) as exc_info:
            repository.run_batch([
                CreateState(_state("burner", 0, PinState.HIGH)),
                UpsertAggregate("burner", 0, H, 60),
                MarkRuntimeAggregated("burner", 12345),
            ])

        assert exc_info.value.index == 2
        assert "#2" in str(exc_info.value)
        assert repository.list_states("burner") == []
        assert repository.get_aggregate("burner", 0, H) is None

    def test_mark_twice_fails(self, repository):
        repository.create_runtime(ConsumerRuntime.between("burner", 0, 1000))
        repository.run_batch([MarkRuntimeAggregated("burner", 0)])
        with pytest.raises(BatchExecutionError):
            repository.run_batch([MarkRuntimeAggregated("burner", 0)])

    def test_empty_batch_is_noop(self, repository):
        repository.run_batch([])


class TestRetry:

    def _locked(self):
        return OperationalError("INSERT", {}, Exception("database is locked"))

    def test_is_locked_error(self):
        assert is_locked_error(self._locked())
        assert not is_locked_error(OperationalError("SELECT", {}, Exception("no such table")))

    def test_retries_locked_then_succeeds(self):
        fn = MagicMock(side_effect=[self._locked(), "ok"])
        with patch("consumer_runtime.persistence.retry.time.sleep") as sleep:
            assert call_with_retry(fn, max_retries=3) == "ok"
        assert fn.call_count == 2
        sleep.assert_called_once()

    def test_gives_up_after_max_retries(self):
        fn = MagicMock(side_effect=self._locked())
        with patch("consumer_runtime.persistence.retry.time.sleep"):
            with pytest.raises(OperationalError):
                call_with_retry(fn, max_retries=3)
        assert fn.call_count == 3

    def test_other_errors_are_not_retried(self):
        fn = MagicMock(side_effect=OperationalError("SELECT", {}, Exception("no such table")))
        with pytest.raises(OperationalError):
            call_with_retry(fn, max_retries=3)
        assert fn.call_count == 1

    def test_zero_retries_raises_without_calling(self):
        fn = MagicMock()
        with pytest.raises(OperationalError):
            call_with_retry(fn, max_retries=0)
        fn.assert_not_called()
