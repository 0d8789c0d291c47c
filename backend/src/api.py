import asyncio
import base64
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from backend.auth import enforce_rate_limit, verify_bearer_token
from .batch import run_batch
from .browser import BrowserManager
from .errors import RendererUnavailable, ValidationError
from .extractor import build_extractors
from .logging_setup import logger, start_logging, stop_logging
from .models import BatchRequest, BatchResult, ContentFormat, ScreenshotMode
from .storage import store_screenshot
from .utils import normalize_urls, safe_filename
from . import config

VALID_FORMATS = [f.value for f in ContentFormat]


class ScrapeRequest(BaseModel):
    # Loosely typed so that bad values get the API's own 400 messages
    urls: Any = None
    screenshot: Any = False
    concurrency: Any = None
    format: Any = None
    clean: bool = False


@asynccontextmanager
async def lifespan(app: FastAPI):
    start_logging()
    logger.info(f"Scrape API starting (env={config.APP_ENV})")
    yield
    logger.warning("Shutting down...")
    await app.state.browser_manager.release()
    logger.info("Shutdown complete")
    stop_logging()


app = FastAPI(lifespan=lifespan, dependencies=[Depends(enforce_rate_limit)])
app.state.browser_manager = BrowserManager()
app.state.extractors = build_extractors()

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ALLOW_ORIGINS or ["*"],
    allow_credentials=bool(config.CORS_ALLOW_ORIGINS),
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/screenshots", StaticFiles(directory=config.SCREENSHOT_DIR, check_dir=False), name="screenshots")


BODY_METHODS = ("POST", "PUT", "PATCH")


async def body_too_large(request: Request) -> bool:
    limit = config.REQUEST_BODY_LIMIT
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            return int(declared) > limit
        except ValueError:
            return False
    if request.method in BODY_METHODS:
        # Chunked upload; buffered here and replayed to the route
        return len(await request.body()) > limit
    return False


def with_response_headers(response, request_id: str):
    response.headers["x-request-id"] = request_id
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    return response


@app.middleware("http")
async def request_context(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    started = time.monotonic()
    if await body_too_large(request):
        response = JSONResponse(status_code=413, content={"error": "Request body too large"})
    else:
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(f"Unhandled error reqId={request_id}: {exc}", exc_info=exc)
            response = JSONResponse(status_code=500, content={"error": str(exc) or "Internal Server Error"})
    with_response_headers(response, request_id)
    ms = int((time.monotonic() - started) * 1000)
    logger.info(f"route={request.url.path} status={response.status_code} ms={ms} reqId={request_id}")
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"error": "Invalid request body"})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    logger.error(f"Unhandled error reqId={request_id}: {exc}", exc_info=exc)
    response = JSONResponse(status_code=500, content={"error": str(exc) or "Internal Server Error"})
    return with_response_headers(response, request_id)


def resolve_concurrency(value: Any) -> int:
    """Missing or invalid -> default; above the ceiling -> clamped."""
    try:
        concurrency = int(value) if value is not None else config.SCRAPE_DEFAULT_CONCURRENCY
    except (TypeError, ValueError):
        concurrency = config.SCRAPE_DEFAULT_CONCURRENCY
    if concurrency < 1:
        concurrency = config.SCRAPE_DEFAULT_CONCURRENCY
    return min(concurrency, config.SCRAPE_MAX_CONCURRENCY)


def parse_scrape_request(req: ScrapeRequest) -> BatchRequest:
    """Validate the request body; raises ValidationError before any browser work."""
    fmt = req.format
    if fmt is None:
        # Legacy `clean` flag only applies when no explicit format was given
        fmt = ContentFormat.TEXT.value if req.clean else ContentFormat.HTML.value

    if not isinstance(req.urls, list) or not req.urls:
        raise ValidationError("urls must be non-empty array")
    if fmt not in VALID_FORMATS:
        raise ValidationError(f"Invalid format. Use {' | '.join(VALID_FORMATS)}")
    if fmt == ContentFormat.MARKDOWN.value and not config.ALLOW_MARKDOWN:
        raise ValidationError("Markdown disabled")

    return BatchRequest(
        urls=normalize_urls(req.urls),
        screenshot=ScreenshotMode.from_request(req.screenshot),
        format=ContentFormat(fmt),
        concurrency=resolve_concurrency(req.concurrency),
    )


async def render_batch_response(batch: BatchRequest, result: BatchResult) -> Dict[str, Any]:
    items = []
    for r in result.results:
        item = r.to_dict()
        if r.screenshot:
            if batch.screenshot == ScreenshotMode.BASE64:
                item["screenshotBase64"] = base64.b64encode(r.screenshot).decode("ascii")
            else:
                filename = f"screenshot_{safe_filename(r.url)}.png"
                stored = await asyncio.to_thread(store_screenshot, r.screenshot, filename)
                if stored.get("stored"):
                    item["screenshotUrl"] = stored["url"]
                else:
                    item["screenshotError"] = "Screenshot upload failed"
        items.append(item)
    return {"results": items, "meta": result.meta}


@app.get('/')
async def root():
    return {"status": "ok", "message": "Scrape API. POST /scrape { urls: [...] }"}


@app.get('/health')
async def health():
    return {"status": "ok"}


@app.post('/scrape', dependencies=[Depends(verify_bearer_token)])
async def scrape(req: ScrapeRequest, request: Request):
    try:
        batch = parse_scrape_request(req)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        result = await run_batch(batch, request.app.state.browser_manager, request.app.state.extractors)
        return await render_batch_response(batch, result)
    except RendererUnavailable as e:
        logger.error(f"Batch aborted reqId={request.state.request_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except Exception as e:
        logger.exception(f"Unexpected error during scrape reqId={request.state.request_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))
