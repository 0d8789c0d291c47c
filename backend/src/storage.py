"""Screenshot storage for file-mode screenshot requests.

The scrape core only produces PNG bytes. The HTTP layer hands them to
`store_screenshot`, which picks one of two backends:

- GCS: when ``SCREENSHOT_GCS_BUCKET`` is configured, the object is uploaded to
  ``gs://<bucket>/screenshots/<timestamp>-<filename>``. The public URL uses
  ``SCREENSHOT_PUBLIC_BASE_URL`` when set, and the storage.googleapis.com form
  otherwise.
- Local disk: otherwise the file is written to ``SCREENSHOT_DIR``, which the
  API serves under ``/screenshots``.

An upload failure never fails the scrape. It is logged, and the caller gets
``{"url": None, "stored": False}``.
"""
from __future__ import annotations

import os
import threading
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

from .logging_setup import logger
from . import config

try:
    from google.cloud import storage as gcs_lib
except Exception:  # pragma: no cover - raised at upload time if missing
    gcs_lib = None


# Process-local counters for storage operations, handy for tests and debugging
_metrics_lock = threading.Lock()
_metrics: Dict[str, int] = {}


def _inc_metric(name: str, amount: int = 1):
    with _metrics_lock:
        _metrics[name] = _metrics.get(name, 0) + int(amount)


def get_metrics() -> Dict[str, int]:
    """Return a snapshot of collected storage metrics."""
    with _metrics_lock:
        return dict(_metrics)


def reset_metrics():
    """Reset all in-memory metrics to zero. Useful for tests."""
    with _metrics_lock:
        _metrics.clear()


def upload_bytes_to_gcs(bucket_name: str, destination: str, data: bytes, content_type: str = 'image/png') -> str:
    """Upload bytes to GCS and return the gs:// path.

    Raises if google.cloud.storage is not available or upload fails.
    """
    if gcs_lib is None:
        raise RuntimeError('google.cloud.storage is not installed')
    client = gcs_lib.Client()
    bucket = client.bucket(bucket_name)
    blob = bucket.blob(destination)
    blob.upload_from_string(data, content_type=content_type)
    _inc_metric('gcs_uploads')
    return f'gs://{bucket_name}/{destination}'


def public_url_for(bucket_name: str, object_path: str, base_url: Optional[str] = None) -> str:
    if base_url:
        return f"{base_url.rstrip('/')}/{quote(object_path)}"
    return f"https://storage.googleapis.com/{bucket_name}/{quote(object_path)}"


def write_local_screenshot(directory: str, filename: str, data: bytes) -> str:
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, filename)
    with open(path, 'wb') as f:
        f.write(data)
    _inc_metric('local_writes')
    return path


def store_screenshot(data: bytes, filename: str) -> Dict[str, Any]:
    """Persist screenshot bytes and return ``{"url": ..., "stored": bool}``."""
    object_name = f"{int(time.time() * 1000)}-{filename}"
    bucket = config.SCREENSHOT_GCS_BUCKET
    try:
        if bucket:
            object_path = f"screenshots/{object_name}"
            upload_bytes_to_gcs(bucket, object_path, data)
            return {"url": public_url_for(bucket, object_path, config.SCREENSHOT_PUBLIC_BASE_URL), "stored": True}
        write_local_screenshot(config.SCREENSHOT_DIR, object_name, data)
        return {"url": f"/screenshots/{quote(object_name)}", "stored": True}
    except Exception as e:
        _inc_metric('store_failures')
        logger.error(f"Screenshot upload failed for {object_name}: {e}")
        return {"url": None, "stored": False}
