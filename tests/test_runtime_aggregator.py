"""Tests de RuntimeAggregator sobre SQLite en memoria."""

from unittest.mock import MagicMock, patch

import pytest

from consumer_runtime.errors import BatchExecutionError
from consumer_runtime.intervals import AggregationInterval
from consumer_runtime.models import ConsumerRuntime, PassStatus, PinState
from consumer_runtime.persistence import MarkRuntimeAggregated, UpsertAggregate
from consumer_runtime.runtime_aggregator import RuntimeAggregator

from conftest import utc_ms

H = AggregationInterval.HOURLY
D = AggregationInterval.DAILY


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def aggregator(repository, utc_calendar) -> RuntimeAggregator:
    return RuntimeAggregator(repository, calendar=utc_calendar)


def _run(tracker, channel, start, stop):
    tracker.record_observed_state(channel, PinState.HIGH, observed_at=start)
    tracker.record_observed_state(channel, PinState.LOW, observed_at=stop)


def _totals(repository, channel, interval=H):
    return {a.bucket_start: a.duration_seconds for a in repository.list_aggregates(channel, interval)}


# =============================================================================
# PASADAS
# =============================================================================

class TestAggregationPass:

    def test_single_span_inside_hour(self, tracker, repository, aggregator):
        start = utc_ms(2024, 1, 15, 10, 5)
        _run(tracker, "burner", start, start + 125000)

        result = aggregator.run_aggregation_pass("burner")

        assert result.status == PassStatus.OK
        assert result.runtimes_aggregated == 1
        assert _totals(repository, "burner") == {utc_ms(2024, 1, 15, 10): 125}
        assert repository.list_runtimes("burner")[0].is_aggregated is True
        assert repository.count_unaggregated("burner") == 0

    def test_second_pass_changes_nothing(self, tracker, repository, aggregator):
        start = utc_ms(2024, 1, 15, 10, 5)
        _run(tracker, "burner", start, start + 125000)
        aggregator.run_aggregation_pass("burner")

        result = aggregator.run_aggregation_pass("burner")

        assert result.status == PassStatus.EMPTY
        assert result.ok
        assert _totals(repository, "burner") == {utc_ms(2024, 1, 15, 10): 125}

    def test_boundary_split(self, tracker, repository, aggregator):
        _run(tracker, "burner", utc_ms(2024, 1, 15, 23, 50), utc_ms(2024, 1, 16, 0, 10))

        aggregator.run_aggregation_pass("burner")

        assert _totals(repository, "burner") == {
            utc_ms(2024, 1, 15, 23): 600,
            utc_ms(2024, 1, 16, 0): 600,
        }

    def test_later_pass_adds_to_existing_bucket(self, tracker, repository, aggregator):
        _run(tracker, "burner", utc_ms(2024, 1, 15, 10, 0), utc_ms(2024, 1, 15, 10, 2))
        aggregator.run_aggregation_pass("burner")
        _run(tracker, "burner", utc_ms(2024, 1, 15, 10, 30), utc_ms(2024, 1, 15, 10, 31))

        result = aggregator.run_aggregation_pass("burner")

        assert [a.duration_seconds for a in result.aggregates] == [180]
        assert _totals(repository, "burner") == {utc_ms(2024, 1, 15, 10): 180}

    def test_runtimes_sharing_a_bucket_in_one_pass(self, tracker, repository, aggregator):
        _run(tracker, "burner", utc_ms(2024, 1, 15, 10, 0), utc_ms(2024, 1, 15, 10, 1))
        _run(tracker, "burner", utc_ms(2024, 1, 15, 10, 10), utc_ms(2024, 1, 15, 10, 12))
        _run(tracker, "burner", utc_ms(2024, 1, 15, 11, 10), utc_ms(2024, 1, 15, 11, 15))

        result = aggregator.run_aggregation_pass("burner")

        assert result.runtimes_aggregated == 3
        assert _totals(repository, "burner") == {
            utc_ms(2024, 1, 15, 10): 180,
            utc_ms(2024, 1, 15, 11): 300,
        }

    def test_channels_do_not_mix(self, tracker, repository, aggregator):
        _run(tracker, "a", utc_ms(2024, 1, 15, 10, 0), utc_ms(2024, 1, 15, 10, 1))
        _run(tracker, "b", utc_ms(2024, 1, 15, 10, 0), utc_ms(2024, 1, 15, 10, 2))

        aggregator.run_aggregation_pass("a")

        assert _totals(repository, "a") == {utc_ms(2024, 1, 15, 10): 60}
        assert _totals(repository, "b") == {}
        assert repository.count_unaggregated("b") == 1

    def test_batch_limit(self, tracker, repository, utc_calendar):
        aggregator = RuntimeAggregator(repository, calendar=utc_calendar, batch_limit=2)
        for minute in (0, 10, 20):
            _run(tracker, "burner", utc_ms(2024, 1, 15, 10, minute), utc_ms(2024, 1, 15, 10, minute + 1))

        assert aggregator.run_aggregation_pass("burner").runtimes_aggregated == 2
        assert aggregator.run_aggregation_pass("burner").runtimes_aggregated == 1
        assert _totals(repository, "burner") == {utc_ms(2024, 1, 15, 10): 180}

    def test_multiple_intervals_in_one_pass(self, tracker, repository, utc_calendar):
        aggregator = RuntimeAggregator(repository, calendar=utc_calendar, intervals=[H, D])
        _run(tracker, "burner", utc_ms(2024, 1, 15, 23, 30), utc_ms(2024, 1, 16, 0, 30))

        aggregator.run_aggregation_pass("burner")

        assert _totals(repository, "burner", H) == {
            utc_ms(2024, 1, 15, 23): 1800,
            utc_ms(2024, 1, 16, 0): 1800,
        }
        assert _totals(repository, "burner", D) == {
            utc_ms(2024, 1, 15): 1800,
            utc_ms(2024, 1, 16): 1800,
        }

    def test_conservation_across_passes(self, tracker, repository, utc_calendar):
        aggregator = RuntimeAggregator(repository, calendar=utc_calendar, batch_limit=1)
        spans = [
            (utc_ms(2024, 1, 15, 9, 59, 30) + 250, utc_ms(2024, 1, 15, 12, 0, 0) + 740),
            (utc_ms(2024, 1, 15, 13, 0), utc_ms(2024, 1, 15, 13, 0, 2) + 499),
            (utc_ms(2024, 1, 15, 23, 59), utc_ms(2024, 1, 16, 0, 3)),
        ]
        for start, stop in spans:
            _run(tracker, "burner", start, stop)

        while aggregator.run_aggregation_pass("burner").status == PassStatus.OK:
            pass

        runtime_total = sum(r.duration_seconds for r in repository.list_runtimes("burner"))
        assert sum(_totals(repository, "burner").values()) == runtime_total


# =============================================================================
# FALLOS
# =============================================================================

class TestAggregationFailures:

    def test_failed_batch_leaves_nothing_behind(self, tracker, repository, aggregator):
        _run(tracker, "burner", utc_ms(2024, 1, 15, 10, 0), utc_ms(2024, 1, 15, 10, 2))
        original = repository._execute_operation

        def fail_on_mark(conn, operation):
            if isinstance(operation, MarkRuntimeAggregated):
                raise RuntimeError("disk I/O error")
            return original(conn, operation)

        with patch.object(repository, "_execute_operation", side_effect=fail_on_mark):
            result = aggregator.run_aggregation_pass("burner")

        assert result.status == PassStatus.FAILED
        assert "disk I/O error" in result.error
        assert _totals(repository, "burner") == {}
        assert repository.count_unaggregated("burner") == 1

        # Se recupera en la siguiente pasada sin doble conteo
        assert aggregator.run_aggregation_pass("burner").status == PassStatus.OK
        assert _totals(repository, "burner") == {utc_ms(2024, 1, 15, 10): 120}

    def test_batch_error_is_reported_not_raised(self, utc_calendar):
        repo = MagicMock()
        repo.get_unaggregated_runtimes.return_value = [
            ConsumerRuntime.between("burner", utc_ms(2024, 1, 15, 10), utc_ms(2024, 1, 15, 10, 1)),
        ]
        repo.get_aggregate.return_value = None
        repo.run_batch.side_effect = BatchExecutionError(0, "op", RuntimeError("locked"))

        result = RuntimeAggregator(repo, calendar=utc_calendar).run_aggregation_pass("burner")

        assert result.status == PassStatus.FAILED
        assert not result.ok

    def test_fetch_error_is_reported(self, utc_calendar):
        repo = MagicMock()
        repo.get_unaggregated_runtimes.side_effect = RuntimeError("no such table")

        result = RuntimeAggregator(repo, calendar=utc_calendar).run_aggregation_pass("burner")

        assert result.status == PassStatus.FAILED
        repo.run_batch.assert_not_called()

    def test_invalid_interval_touches_nothing(self, utc_calendar):
        repo = MagicMock()
        aggregator = RuntimeAggregator(repo, calendar=utc_calendar, intervals=["FORTNIGHTLY"])

        result = aggregator.run_aggregation_pass("burner")

        assert result.status == PassStatus.INVALID_INTERVAL
        assert "FORTNIGHTLY" in result.error
        repo.get_unaggregated_runtimes.assert_not_called()
        repo.run_batch.assert_not_called()

    def test_requires_an_interval(self, repository):
        with pytest.raises(ValueError):
            RuntimeAggregator(repository, intervals=[])


def test_batch_carries_delta_not_total(utc_calendar):
    from consumer_runtime.models import ConsumerRuntimeAggregate

    repo = MagicMock()
    bucket = utc_ms(2024, 1, 15, 10)
    repo.get_aggregate.return_value = ConsumerRuntimeAggregate("burner", bucket, H, 500)
    runtime = ConsumerRuntime.between("burner", bucket + 60000, bucket + 120000)

    aggregates, operations = RuntimeAggregator(repo, calendar=utc_calendar).build_batch([runtime])

    assert aggregates[0].duration_seconds == 560
    assert operations == [
        UpsertAggregate("burner", bucket, H, 60),
        MarkRuntimeAggregated("burner", bucket + 60000),
    ]
