import logging
import logging.handlers
import os
import queue
from typing import Optional

LOG_DIR = os.getenv('LOG_DIR') or os.path.join(os.path.dirname(__file__), '../../logs')
LOG_FILE = os.path.join(LOG_DIR, 'app.log')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()

os.makedirs(LOG_DIR, exist_ok=True)

# Thread-safe queue for log records; the request path only enqueues
_log_queue: "queue.Queue[logging.LogRecord]" = queue.Queue(-1)

_file_handler = logging.FileHandler(LOG_FILE)
_stream_handler = logging.StreamHandler()
for h in (_file_handler, _stream_handler):
    h.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s'))

_queue_listener: Optional[logging.handlers.QueueListener] = logging.handlers.QueueListener(
    _log_queue, _file_handler, _stream_handler
)

_queue_handler = logging.handlers.QueueHandler(_log_queue)
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
for h in list(root_logger.handlers):
    root_logger.removeHandler(h)
root_logger.addHandler(_queue_handler)

# Named logger for the application
logger = logging.getLogger('scrapeservice')

_listener_started = False


def start_logging():
    """Start the background QueueListener. Called from the app lifespan."""
    global _listener_started
    if _queue_listener and not _listener_started:
        _queue_listener.start()
        _listener_started = True


def stop_logging():
    """Stop the background QueueListener, flushing queued records."""
    global _listener_started
    if _queue_listener and _listener_started:
        _queue_listener.stop()
        _listener_started = False


# Start eagerly so imports (like main.py) get immediate logging
start_logging()
