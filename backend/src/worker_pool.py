import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .logging_setup import logger
from .models import RenderTask, TaskResult
from .page_session import open_page, navigate


@dataclass
class BatchContext:
    """Mutable state owned by exactly one batch and handed to its workers."""
    browser: object
    extractor: object
    navigation_timeout_ms: int
    capture_screenshot: bool = False
    cancel_event: Optional[asyncio.Event] = None
    queue: "asyncio.Queue[RenderTask]" = field(default_factory=asyncio.Queue)
    results: List[TaskResult] = field(default_factory=list)

    def enqueue_all(self, urls: Sequence[str]):
        for url in urls:
            self.queue.put_nowait(RenderTask(url=url))

    def next_task(self) -> Optional[RenderTask]:
        try:
            return self.queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()


def effective_concurrency(requested: int, maximum: int, task_count: int) -> int:
    """Never more workers than tasks, never above the configured ceiling."""
    return max(1, min(int(requested), int(maximum), int(task_count)))


async def process_task(ctx: BatchContext, task: RenderTask) -> TaskResult:
    """Render one URL and extract its content. Never raises; failures become error results."""
    start = time.monotonic()
    try:
        async with open_page(ctx.browser) as page:
            await navigate(page, task.url, ctx.navigation_timeout_ms)
            content = await ctx.extractor.extract(page)
            screenshot = None
            if ctx.capture_screenshot:
                screenshot = await page.screenshot(full_page=True, type="png")
        return TaskResult.success(task.url, time.monotonic() - start, content, ctx.extractor.name, screenshot)
    except Exception as e:
        logger.warning(f"[worker] {task.url} failed: {e}")
        return TaskResult.failure(task.url, time.monotonic() - start, str(e) or type(e).__name__)


async def worker(ctx: BatchContext, worker_id: int) -> int:
    """Drain the batch queue until empty. Returns the number of tasks handled."""
    handled = 0
    while True:
        task = ctx.next_task()
        if task is None:
            break
        if ctx.cancelled:
            ctx.results.append(TaskResult.failure(task.url, 0.0, "Batch cancelled"))
        else:
            ctx.results.append(await process_task(ctx, task))
        handled += 1
    logger.debug(f"[worker {worker_id}] exiting after {handled} task(s)")
    return handled


async def run_workers(ctx: BatchContext, worker_count: int) -> List[int]:
    return await asyncio.gather(*(worker(ctx, i) for i in range(worker_count)))
