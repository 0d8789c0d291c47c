from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ContentFormat(str, Enum):
    HTML = "html"
    TEXT = "text"
    MARKDOWN = "markdown"


class ScreenshotMode(str, Enum):
    OFF = "off"
    BASE64 = "base64"
    FILE = "file"

    @classmethod
    def from_request(cls, value: Any) -> "ScreenshotMode":
        """Map the loose request value: falsy -> off, "base64" -> inline, any other truthy -> file."""
        if not value:
            return cls.OFF
        if value == "base64":
            return cls.BASE64
        return cls.FILE


@dataclass(frozen=True)
class RenderTask:
    url: str


@dataclass
class TaskResult:
    """Outcome of one task. Exactly one of `content` / `error` is set."""
    url: str
    elapsed_seconds: float
    content: Optional[str] = None
    content_format: Optional[str] = None
    screenshot: Optional[bytes] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, url: str, elapsed: float, content: str, content_format: str,
                screenshot: Optional[bytes] = None) -> "TaskResult":
        return cls(url=url, elapsed_seconds=round(elapsed, 3), content=content,
                   content_format=content_format, screenshot=screenshot)

    @classmethod
    def failure(cls, url: str, elapsed: float, error: str) -> "TaskResult":
        return cls(url=url, elapsed_seconds=round(elapsed, 3), error=error)

    def is_successful(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"url": self.url, "elapsedSeconds": self.elapsed_seconds}
        if self.is_successful():
            data["content"] = self.content
            data["contentFormat"] = self.content_format
        else:
            data["error"] = self.error
        return data


@dataclass
class BatchRequest:
    urls: List[str]
    screenshot: ScreenshotMode = ScreenshotMode.OFF
    format: ContentFormat = ContentFormat.HTML
    concurrency: int = 1


@dataclass
class BatchResult:
    results: List[TaskResult]
    count: int
    duration_ms: int
    duration_seconds: float = field(init=False)

    def __post_init__(self):
        self.duration_seconds = round(self.duration_ms / 1000, 3)

    @property
    def meta(self) -> Dict[str, Any]:
        return {"count": self.count, "durationMs": self.duration_ms, "durationSeconds": self.duration_seconds}
