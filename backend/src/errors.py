"""Error taxonomy for the scrape pipeline.

Per-task errors (navigation, extraction) are caught inside the worker and
recorded on the task's result. Validation errors are raised before any browser
work. RendererUnavailable aborts the whole batch.
"""


class ScrapeError(Exception):
    """Base class for all scrape service errors."""


class ValidationError(ScrapeError):
    """Caller input was rejected (empty list, bad URL, protocol or format)."""


class NavigationError(ScrapeError):
    """Page load failed: timeout, DNS, connection, TLS or closed target."""


class ExtractionError(ScrapeError):
    """Reading or converting the rendered page content failed."""


class RendererUnavailable(ScrapeError):
    """The shared browser could not be launched or acquired."""
