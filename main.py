"""Top-level ASGI entrypoint.

This module exposes the FastAPI `app` object so platforms that expect
`main:app` can import it. It also provides a local runner when executed
directly.
"""
import asyncio
import logging
import sys

from backend.src.api import app  # expose the FastAPI app at module level
from backend.src import config

log = logging.getLogger("bootstrap")


if __name__ == "__main__":
    if sys.platform == "win32":
        # Playwright spawns the browser as a subprocess, which needs the Proactor loop
        policy = asyncio.get_event_loop_policy()
        if type(policy).__name__ != "WindowsProactorEventLoopPolicy":
            asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())
            log.info("Set WindowsProactorEventLoopPolicy for this process")

    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=config.PORT, log_level=config.LOG_LEVEL.lower())
