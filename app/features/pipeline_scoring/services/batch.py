"""
Map-with-isolated-failure-capture.

Runs an async function over a list of items in batches with bounded
concurrency and a per-item timeout. Every item ends up as a tagged
ItemResult; one item's exception never reaches the others. Used by both
the queue processor and the stale sweeper.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, Literal, TypeVar

from app.config import settings
from app.features.pipeline_scoring.domain import BatchStepResult, ItemError, NotFound
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

ItemStatus = Literal["succeeded", "failed", "skipped"]


@dataclass(slots=True)
class ItemResult(Generic[T, R]):
    item: T
    status: ItemStatus
    value: R | None = None
    error: str | None = None
    duration_ms: float = 0.0


@dataclass(frozen=True, slots=True)
class BatchOptions:
    batch_size: int = 25
    batch_delay_seconds: float = 0.2
    max_concurrency: int = 10
    item_timeout_seconds: float | None = 30.0

    @classmethod
    def from_settings(cls) -> BatchOptions:
        return cls(**settings.get_pipeline_batch_config())


def _describe(error: BaseException) -> str:
    message = str(error)
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


async def _run_one(
    item: T,
    func: Callable[[T], Awaitable[R | None]],
    semaphore: asyncio.Semaphore,
    timeout: float | None,
) -> ItemResult[T, R]:
    async with semaphore:
        started = time.perf_counter()
        try:
            value = await asyncio.wait_for(func(item), timeout=timeout)
        except NotFound as e:
            return ItemResult(item, "skipped", error=str(e), duration_ms=_since(started))
        except TimeoutError:
            return ItemResult(
                item,
                "failed",
                error=f"Timed out after {timeout}s",
                duration_ms=_since(started),
            )
        except Exception as e:
            return ItemResult(item, "failed", error=_describe(e), duration_ms=_since(started))

        status: ItemStatus = "skipped" if value is None else "succeeded"
        return ItemResult(item, status, value=value, duration_ms=_since(started))


def _since(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


async def map_isolated(
    items: Sequence[T],
    func: Callable[[T], Awaitable[R | None]],
    options: BatchOptions | None = None,
) -> list[ItemResult[T, R]]:
    """
    Apply ``func`` to every item, capturing failures per item.

    A ``None`` return or NotFound marks the item skipped; any other
    exception (including the per-item timeout) marks it failed. Results
    come back in input order.
    """
    options = options or BatchOptions()
    if not items:
        return []

    size = max(1, options.batch_size)
    batches = [items[i : i + size] for i in range(0, len(items), size)]
    semaphore = asyncio.Semaphore(max(1, options.max_concurrency))
    results: list[ItemResult[T, R]] = []

    for batch_num, batch in enumerate(batches, 1):
        logger.debug(
            "Processing batch",
            batch_number=batch_num,
            batch_size=len(batch),
            total_batches=len(batches),
        )
        results.extend(
            await asyncio.gather(
                *(_run_one(item, func, semaphore, options.item_timeout_seconds) for item in batch)
            )
        )

        if batch_num < len(batches) and options.batch_delay_seconds > 0:
            await asyncio.sleep(options.batch_delay_seconds)

    return results


def summarize(
    results: Sequence[ItemResult],
    deal_id_of: Callable[[object], str],
    started: float,
) -> BatchStepResult:
    """Fold tagged item results into the counts a batch step reports."""
    summary = BatchStepResult(processed=len(results))
    for result in results:
        if result.status == "succeeded":
            summary.succeeded += 1
        elif result.status == "skipped":
            summary.skipped += 1
        else:
            summary.failed += 1
            summary.errors.append(ItemError(deal_id_of(result.item), result.error or "unknown"))
    summary.duration_ms = int((time.perf_counter() - started) * 1000)
    return summary


def alert_on_error_rate(step: str, summary: BatchStepResult) -> None:
    """Emit an alert-level log when too many items in a step failed."""
    threshold = settings.PIPELINE_ERROR_RATE_ALERT_THRESHOLD
    if summary.processed and summary.failure_rate > threshold:
        logger.critical(
            "Pipeline scoring error rate above threshold",
            alert_type="pipeline_scoring_high_error_rate",
            step=step,
            failed=summary.failed,
            processed=summary.processed,
            failure_rate=round(summary.failure_rate, 3),
            threshold=threshold,
        )
