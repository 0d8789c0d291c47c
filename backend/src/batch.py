import asyncio
import time
from collections import defaultdict, deque
from typing import Deque, Dict, List, Mapping, Optional, Sequence

from .logging_setup import logger
from .models import BatchRequest, BatchResult, ScreenshotMode, TaskResult
from .worker_pool import BatchContext, effective_concurrency, run_workers
from . import config


def reorder_results(urls: Sequence[str], results: Sequence[TaskResult]) -> List[TaskResult]:
    """Put results back into input order.

    Each input occurrence takes the first not-yet-consumed result with the same
    URL, so duplicate URLs each receive a distinct result.
    """
    pending: Dict[str, Deque[TaskResult]] = defaultdict(deque)
    for result in results:
        pending[result.url].append(result)
    ordered = []
    for url in urls:
        bucket = pending.get(url)
        if bucket:
            ordered.append(bucket.popleft())
        else:
            # Unreachable while every dequeued task records a result
            ordered.append(TaskResult.failure(url, 0.0, "No result recorded"))
    return ordered


async def run_batch(request: BatchRequest, browser_manager, extractors: Mapping[str, object], *,
                    max_concurrency: Optional[int] = None,
                    navigation_timeout_ms: Optional[int] = None,
                    cancel_event: Optional[asyncio.Event] = None) -> BatchResult:
    """Scrape every URL of `request` on the shared browser and return results in input order.

    The caller validates the request. A browser that cannot be acquired raises
    RendererUnavailable for the whole batch; every per-URL failure is recorded
    on that URL's result instead.
    """
    started = time.monotonic()
    max_concurrency = config.SCRAPE_MAX_CONCURRENCY if max_concurrency is None else max_concurrency
    navigation_timeout_ms = config.SCRAPE_NAV_TIMEOUT_MS if navigation_timeout_ms is None else navigation_timeout_ms

    browser = await browser_manager.acquire()

    ctx = BatchContext(
        browser=browser,
        extractor=extractors[request.format.value],
        navigation_timeout_ms=navigation_timeout_ms,
        capture_screenshot=request.screenshot != ScreenshotMode.OFF,
        cancel_event=cancel_event,
    )
    ctx.enqueue_all(request.urls)
    workers = effective_concurrency(request.concurrency, max_concurrency, len(request.urls))
    logger.info(f"[batch] {len(request.urls)} url(s), {workers} worker(s), format={request.format.value}")

    await run_workers(ctx, workers)

    duration_ms = int((time.monotonic() - started) * 1000)
    ordered = reorder_results(request.urls, ctx.results)
    failed = sum(1 for r in ordered if not r.is_successful())
    logger.info(f"[batch] done in {duration_ms} ms ({failed} failed)")
    return BatchResult(results=ordered, count=len(request.urls), duration_ms=duration_ms)
