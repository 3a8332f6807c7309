import asyncio
import time
from unittest.mock import MagicMock

import pytest

from app.features.pipeline_scoring.domain import NotFound, TransientStorageError
from app.features.pipeline_scoring.services.batch import (
    BatchOptions,
    alert_on_error_rate,
    map_isolated,
    summarize,
)


async def _score(item: str):
    if item.startswith("missing"):
        raise NotFound(item)
    if item.startswith("broken"):
        raise TransientStorageError("connection reset")
    if item.startswith("terminal"):
        return None
    return {"deal_id": item}


class TestMapIsolated:
    @pytest.mark.asyncio
    async def test_failures_do_not_abort_the_batch(self, fast_options):
        items = ["a", "broken-1", "b", "missing-1", "terminal-1", "c"]

        results = await map_isolated(items, _score, fast_options)

        assert [r.item for r in results] == items
        assert [r.status for r in results] == [
            "succeeded",
            "failed",
            "succeeded",
            "skipped",
            "skipped",
            "succeeded",
        ]
        assert results[1].error == "TransientStorageError: connection reset"
        assert results[0].value == {"deal_id": "a"}

    @pytest.mark.asyncio
    async def test_item_timeout(self):
        async def slow(item):
            await asyncio.sleep(1)

        options = BatchOptions(batch_size=5, batch_delay_seconds=0, item_timeout_seconds=0.01)
        results = await map_isolated(["a"], slow, options)

        assert results[0].status == "failed"
        assert "Timed out" in results[0].error

    @pytest.mark.asyncio
    async def test_bounded_concurrency(self):
        running = 0
        peak = 0

        async def track(item):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return item

        options = BatchOptions(batch_size=10, batch_delay_seconds=0, max_concurrency=3)
        results = await map_isolated(list(range(10)), track, options)

        assert peak == 3
        assert all(r.status == "succeeded" for r in results)

    @pytest.mark.asyncio
    async def test_empty_input(self, fast_options):
        assert await map_isolated([], _score, fast_options) == []


class TestSummarize:
    @pytest.mark.asyncio
    async def test_counts(self, fast_options):
        results = await map_isolated(["a", "broken-1", "missing-1"], _score, fast_options)

        summary = summarize(results, lambda item: item, time.perf_counter())

        assert summary.processed == 3
        assert summary.succeeded == 1
        assert summary.failed == 1
        assert summary.skipped == 1
        assert summary.errors[0].deal_id == "broken-1"
        assert summary.processed == summary.succeeded + summary.failed + summary.skipped


class TestErrorRateAlert:
    @pytest.mark.asyncio
    async def test_alert_logged_above_threshold(self, fast_options, monkeypatch):
        logger = MagicMock()
        monkeypatch.setattr("app.features.pipeline_scoring.services.batch.logger", logger)
        results = await map_isolated(["broken-1", "broken-2", "a"], _score, fast_options)

        alert_on_error_rate("stale_sweep", summarize(results, lambda i: i, time.perf_counter()))

        kwargs = logger.critical.call_args.kwargs
        assert kwargs["alert_type"] == "pipeline_scoring_high_error_rate"
        assert kwargs["step"] == "stale_sweep"

    @pytest.mark.asyncio
    async def test_no_alert_below_threshold(self, fast_options, monkeypatch):
        logger = MagicMock()
        monkeypatch.setattr("app.features.pipeline_scoring.services.batch.logger", logger)
        results = await map_isolated(["broken-1", "a", "b"], _score, fast_options)

        alert_on_error_rate("event_queue", summarize(results, lambda i: i, time.perf_counter()))

        logger.critical.assert_not_called()
