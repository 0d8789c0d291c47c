import asyncio

import pytest

from backend.src.batch import run_batch, reorder_results
from backend.src.errors import RendererUnavailable
from backend.src.extractor import build_extractors
from backend.src.models import BatchRequest, ContentFormat, ScreenshotMode, TaskResult
from backend.src.worker_pool import BatchContext, effective_concurrency, run_workers
from backend.src.browser import BrowserManager
from backend.tests.dummies import DummyBrowser, make_manager

A = "https://a.example/"
B = "https://b.example/"
C = "https://c.example/"


def _extractors():
    return build_extractors(markdown_enabled=True)


def _run(request, manager, **kwargs):
    kwargs.setdefault("max_concurrency", 5)
    kwargs.setdefault("navigation_timeout_ms", 1000)
    return asyncio.run(run_batch(request, manager, _extractors(), **kwargs))


def test_results_follow_input_order_despite_completion_order():
    browser = DummyBrowser(delays={A: 0.05, B: 0.01, C: 0.0})
    manager, _ = make_manager(lambda: browser)
    urls = [A, B, C]

    result = _run(BatchRequest(urls=urls, format=ContentFormat.HTML, concurrency=3), manager)

    assert [r.url for r in result.results] == urls
    assert result.count == 3
    assert result.meta["count"] == 3
    assert result.meta["durationMs"] >= 0
    assert result.meta["durationSeconds"] == round(result.duration_ms / 1000, 3)


def test_duplicate_urls_each_get_their_own_result():
    browser = DummyBrowser(delays={A: 0.02})
    manager, _ = make_manager(lambda: browser)
    urls = [A, B, A, A]

    result = _run(BatchRequest(urls=urls, concurrency=4), manager)

    assert [r.url for r in result.results] == urls
    assert len({id(r) for r in result.results}) == 4
    assert browser.navigations[A] == 3
    assert browser.navigations[B] == 1


def test_each_result_has_content_or_error_never_both():
    browser = DummyBrowser(failing={B})
    manager, _ = make_manager(lambda: browser)

    result = _run(BatchRequest(urls=[A, B, C], format=ContentFormat.TEXT, concurrency=2), manager)

    for r in result.results:
        assert (r.content is None) != (r.error is None)
        assert r.elapsed_seconds >= 0
        assert r.elapsed_seconds == round(r.elapsed_seconds, 3)


def test_partial_failure_does_not_abort_batch():
    browser = DummyBrowser(failing={A})
    manager, _ = make_manager(lambda: browser)

    result = _run(BatchRequest(urls=[A, B], format=ContentFormat.HTML, concurrency=2), manager)

    first, second = result.results
    assert first.url == A and "ERR_NAME_NOT_RESOLVED" in first.error and first.content is None
    assert second.url == B and second.content and second.error is None
    assert result.meta["count"] == 2
    assert first.to_dict().keys() == {"url", "elapsedSeconds", "error"}
    assert second.to_dict().keys() == {"url", "elapsedSeconds", "content", "contentFormat"}


def test_page_session_released_on_every_path():
    browser = DummyBrowser(failing={A})
    manager, _ = make_manager(lambda: browser)

    _run(BatchRequest(urls=[A, B, C], format=ContentFormat.TEXT, concurrency=2), manager)

    assert len(browser.contexts) == 3
    assert all(ctx.closed == 1 for ctx in browser.contexts)


def test_extraction_failure_is_recorded_and_page_closed():
    browser = DummyBrowser()
    browser.evaluate_error = True
    manager, _ = make_manager(lambda: browser)

    result = _run(BatchRequest(urls=[A], format=ContentFormat.TEXT, concurrency=1), manager)

    assert "Failed to read page text" in result.results[0].error
    assert browser.contexts[0].closed == 1


def test_navigation_waits_for_network_idle():
    browser = DummyBrowser()
    manager, _ = make_manager(lambda: browser)

    _run(BatchRequest(urls=[A], concurrency=1), manager)

    assert browser.wait_untils == ["networkidle"]


def test_effective_concurrency_clamps():
    assert effective_concurrency(1000, 5, 2) == 2
    assert effective_concurrency(3, 5, 10) == 3
    assert effective_concurrency(10, 5, 10) == 5
    assert effective_concurrency(0, 5, 10) == 1


def test_queue_exhaustion_processes_each_task_once():
    browser = DummyBrowser()
    ctx = BatchContext(browser=browser, extractor=_extractors()["html"], navigation_timeout_ms=1000)

    async def _go():
        ctx.enqueue_all([A, B])
        return await run_workers(ctx, 3)

    handled = asyncio.run(_go())

    assert sorted(handled) == [0, 1, 1]
    assert browser.navigations == {A: 1, B: 1}
    assert len(ctx.results) == 2
    assert ctx.queue.empty()


def test_worker_count_never_exceeds_ceiling():
    browser = DummyBrowser(delays={u: 0.02 for u in (A, B, C)})
    manager, _ = make_manager(lambda: browser)
    in_flight = {"now": 0, "peak": 0}
    original_new_context = browser.new_context

    async def tracking_new_context(**kwargs):
        in_flight["now"] += 1
        in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
        ctx = await original_new_context(**kwargs)
        original_close = ctx.close

        async def close():
            in_flight["now"] -= 1
            await original_close()
        ctx.close = close
        return ctx

    browser.new_context = tracking_new_context

    _run(BatchRequest(urls=[A, B, C, A, B, C], concurrency=1000), manager, max_concurrency=2)

    assert in_flight["peak"] == 2


def test_markdown_falls_back_to_text_when_converter_unavailable():
    browser = DummyBrowser()
    manager, _ = make_manager(lambda: browser)
    degraded = build_extractors(markdown_enabled=False)

    async def _go():
        md = await run_batch(BatchRequest(urls=[A], format=ContentFormat.MARKDOWN), manager, degraded,
                             max_concurrency=5, navigation_timeout_ms=1000)
        txt = await run_batch(BatchRequest(urls=[A], format=ContentFormat.TEXT), manager, degraded,
                              max_concurrency=5, navigation_timeout_ms=1000)
        return md, txt

    md, txt = asyncio.run(_go())

    assert md.results[0].content == txt.results[0].content == "Title\n\nHello world"
    # The format actually produced is reported
    assert md.results[0].content_format == "text"


def test_markdown_uses_atx_headings():
    browser = DummyBrowser()
    manager, _ = make_manager(lambda: browser)

    result = _run(BatchRequest(urls=[A], format=ContentFormat.MARKDOWN), manager)

    r = result.results[0]
    assert r.content_format == "markdown"
    assert r.content.startswith("# Title")
    assert "**world**" in r.content


def test_full_page_screenshot_captured_when_requested():
    browser = DummyBrowser()
    manager, _ = make_manager(lambda: browser)

    result = _run(BatchRequest(urls=[A, B], screenshot=ScreenshotMode.BASE64, concurrency=2), manager)

    assert all(s["full_page"] for s in browser.screenshots)
    assert result.results[0].screenshot == b"\x89PNG-" + A.encode()


def test_no_screenshot_by_default():
    browser = DummyBrowser()
    manager, _ = make_manager(lambda: browser)

    result = _run(BatchRequest(urls=[A]), manager)

    assert browser.screenshots == []
    assert result.results[0].screenshot is None


def test_concurrent_batches_share_a_single_launch():
    manager, launched = make_manager(launch_delay=0.05)

    async def _go():
        return await asyncio.gather(
            run_batch(BatchRequest(urls=[A, B]), manager, _extractors(), max_concurrency=5, navigation_timeout_ms=1000),
            run_batch(BatchRequest(urls=[C]), manager, _extractors(), max_concurrency=5, navigation_timeout_ms=1000),
        )

    first, second = asyncio.run(_go())

    assert len(launched) == 1
    assert [r.url for r in first.results] == [A, B]
    assert [r.url for r in second.results] == [C]
    # The batch never closes the shared browser
    assert launched[0].closed is False


def test_launch_failure_aborts_whole_batch():
    async def broken_launcher():
        raise RuntimeError("Executable doesn't exist")

    manager = BrowserManager(headless=True, launcher=broken_launcher)

    with pytest.raises(RendererUnavailable):
        _run(BatchRequest(urls=[A]), manager)


def test_cancelled_batch_records_remaining_tasks():
    browser = DummyBrowser()
    manager, _ = make_manager(lambda: browser)

    async def _go():
        event = asyncio.Event()
        event.set()
        return await run_batch(BatchRequest(urls=[A, B]), manager, _extractors(),
                               max_concurrency=5, navigation_timeout_ms=1000, cancel_event=event)

    result = asyncio.run(_go())

    assert [r.error for r in result.results] == ["Batch cancelled", "Batch cancelled"]
    assert browser.navigations == {}


def test_reorder_matches_duplicates_first_come_first_served():
    results = [
        TaskResult.failure(B, 0.1, "boom"),
        TaskResult.success(A, 0.2, "first", "html"),
        TaskResult.success(A, 0.3, "second", "html"),
    ]

    ordered = reorder_results([A, B, A], results)

    assert [r.content or r.error for r in ordered] == ["first", "boom", "second"]


def test_durations_ignore_wall_clock_jumps(monkeypatch):
    import itertools
    import time

    # Wall clock stepping backwards must not produce negative timings
    backwards = itertools.count(2_000_000_000, -1000)
    monkeypatch.setattr(time, "time", lambda: float(next(backwards)))
    manager, _ = make_manager()

    result = _run(BatchRequest(urls=[A, B]), manager)

    assert result.duration_ms >= 0
    assert all(r.elapsed_seconds >= 0 for r in result.results)
