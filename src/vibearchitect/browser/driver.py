from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

WaitUntil = Literal["load", "domcontentloaded", "networkidle", "commit"]
RequestListener = Callable[[str], None]


class BrowserDriverError(RuntimeError):
    """Raised when the underlying browser engine fails."""

    def __init__(self, message: str, *, retriable: bool = True) -> None:
        super().__init__(message)
        self.retriable = retriable


@dataclass(frozen=True, slots=True)
class NavigationResponse:
    status: int
    status_text: str = ""
    url: str = ""


@dataclass(slots=True)
class Cookie:
    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float = -1
    http_only: bool = False
    secure: bool = False
    same_site: str = "Lax"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path,
            "expires": self.expires,
            "httpOnly": self.http_only,
            "secure": self.secure,
            "sameSite": self.same_site,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Cookie:
        return cls(
            name=str(data["name"]),
            value=str(data.get("value", "")),
            domain=str(data.get("domain", "")),
            path=str(data.get("path", "/")),
            expires=float(data.get("expires", -1)),
            http_only=bool(data.get("httpOnly", False)),
            secure=bool(data.get("secure", False)),
            same_site=str(data.get("sameSite", "Lax")),
        )


@dataclass(slots=True)
class StorageOrigin:
    origin: str
    local_storage: list[tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "origin": self.origin,
            "localStorage": [{"name": name, "value": value} for name, value in self.local_storage],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageOrigin:
        return cls(
            origin=str(data.get("origin", "")),
            local_storage=[
                (str(item["name"]), str(item.get("value", "")))
                for item in data.get("localStorage", [])
                if isinstance(item, dict) and "name" in item
            ],
        )


@dataclass(slots=True)
class StorageState:
    """Browser storage snapshot in Playwright's ``storage_state`` JSON shape."""

    cookies: list[Cookie] = field(default_factory=list)
    origins: list[StorageOrigin] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cookies": [cookie.to_dict() for cookie in self.cookies],
            "origins": [origin.to_dict() for origin in self.origins],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageState:
        return cls(
            cookies=[Cookie.from_dict(item) for item in data.get("cookies", []) if isinstance(item, dict)],
            origins=[
                StorageOrigin.from_dict(item) for item in data.get("origins", []) if isinstance(item, dict)
            ],
        )


class BrowserDriver(ABC):
    """Narrow browser surface used by navigation and session logic."""

    @abstractmethod
    async def start(
        self,
        *,
        headless: bool = True,
        storage_state: StorageState | None = None,
        record_video_dir: Path | None = None,
    ) -> None:
        """Launch the browser with one context and one page, recording video into ``record_video_dir``."""

    @abstractmethod
    async def close(self) -> Path | None:
        """Release the browser, context and page; returns the video file when recording."""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Whether a page is available."""

    @abstractmethod
    async def goto(
        self, url: str, *, timeout_ms: float, wait_until: WaitUntil = "domcontentloaded"
    ) -> NavigationResponse | None:
        """Navigate the page and return the main-frame response."""

    @abstractmethod
    async def reload(self, *, timeout_ms: float) -> NavigationResponse | None:
        """Reload the current page."""

    @abstractmethod
    def current_url(self) -> str:
        """URL of the page after redirects."""

    @abstractmethod
    async def title(self) -> str:
        """Document title."""

    @abstractmethod
    async def content(self) -> str:
        """Serialized page HTML."""

    @abstractmethod
    async def evaluate(self, expression: str) -> Any:
        """Evaluate a JavaScript expression in the page."""

    @abstractmethod
    async def wait_for_function(self, expression: str, *, timeout_ms: float) -> None:
        """Wait until the expression is truthy."""

    @abstractmethod
    async def wait_for_selector(self, selector: str, *, timeout_ms: float) -> None:
        """Wait until the selector is visible."""

    @abstractmethod
    async def is_visible(self, selector: str) -> bool:
        """Whether the first element for the selector is visible."""

    @abstractmethod
    async def click(self, selector: str, *, timeout_ms: float) -> None:
        """Click the first element for the selector."""

    @abstractmethod
    async def fill(self, selector: str, text: str, *, timeout_ms: float) -> None:
        """Replace the value of an input element."""

    @abstractmethod
    async def screenshot(self, path: Path, *, full_page: bool = True) -> None:
        """Write a PNG screenshot."""

    @abstractmethod
    async def set_extra_headers(self, headers: dict[str, str]) -> None:
        """Send extra HTTP headers with every request."""

    @abstractmethod
    async def storage_state(self) -> StorageState:
        """Capture cookies and localStorage of the context."""

    @abstractmethod
    async def add_cookies(self, cookies: list[Cookie]) -> None:
        """Add cookies to the context."""

    @abstractmethod
    async def clear_cookies(self) -> None:
        """Remove all cookies from the context."""

    @abstractmethod
    def on_request(self, listener: RequestListener) -> Callable[[], None]:
        """Call ``listener`` with each request URL; returns an unsubscribe callable."""

    async def new_context(self) -> None:
        """Replace the browsing context; engines without that fall back to clearing cookies."""
        await self.clear_cookies()
