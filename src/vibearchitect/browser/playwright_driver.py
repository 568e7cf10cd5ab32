from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from vibearchitect.browser.driver import (
    BrowserDriver,
    BrowserDriverError,
    Cookie,
    NavigationResponse,
    RequestListener,
    StorageState,
    WaitUntil,
)

logger = logging.getLogger(__name__)

INSTALL_HINT = (
    "Playwright is not installed. Install it with "
    "`pip install 'vibearchitect[browser]'` and `python -m playwright install chromium`."
)

_SAME_SITE_VALUES = {"strict": "Strict", "lax": "Lax", "none": "None"}


class PlaywrightDriver(BrowserDriver):
    """Chromium driver backed by ``playwright.async_api``."""

    def __init__(self, *, viewport: tuple[int, int] = (1280, 720)) -> None:
        self.viewport = viewport
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._page: Any = None
        self._headless = True
        self._listeners: list[RequestListener] = []
        self._record_video_dir: Path | None = None
        self._error_type: type[Exception] | None = None

    @property
    def is_running(self) -> bool:
        return self._page is not None

    async def start(
        self,
        *,
        headless: bool = True,
        storage_state: StorageState | None = None,
        record_video_dir: Path | None = None,
    ) -> None:
        if self._page is not None:
            return
        try:
            from playwright.async_api import Error, async_playwright
        except ImportError as exc:
            raise BrowserDriverError(INSTALL_HINT, retriable=False) from exc

        self._error_type = Error
        self._headless = headless
        self._record_video_dir = record_video_dir
        self._playwright = await async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(headless=headless)
        except Exception as exc:
            await self._playwright.stop()
            self._playwright = None
            raise BrowserDriverError(f"Failed to launch Chromium: {exc}", retriable=False) from exc
        await self._open_context(storage_state)
        logger.info(
            "Launched Chromium (headless=%s, recording=%s)", headless, record_video_dir is not None
        )

    async def close(self) -> Path | None:
        video_path: Path | None = None
        if self._page is not None and self._record_video_dir is not None:
            # The video file is only complete once its page is closed.
            await self._page.close()
            if self._page.video is not None:
                video_path = Path(await self._page.video.path())
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()
        self._page = None
        self._context = None
        self._browser = None
        self._playwright = None
        self._record_video_dir = None
        return video_path

    async def goto(
        self, url: str, *, timeout_ms: float, wait_until: WaitUntil = "domcontentloaded"
    ) -> NavigationResponse | None:
        page = self._require_page()
        with self._translated():
            response = await page.goto(url, timeout=timeout_ms, wait_until=wait_until)
        return _to_navigation_response(response)

    async def reload(self, *, timeout_ms: float) -> NavigationResponse | None:
        page = self._require_page()
        with self._translated():
            response = await page.reload(timeout=timeout_ms)
        return _to_navigation_response(response)

    def current_url(self) -> str:
        return str(self._require_page().url)

    async def title(self) -> str:
        page = self._require_page()
        with self._translated():
            return str(await page.title())

    async def content(self) -> str:
        page = self._require_page()
        with self._translated():
            return str(await page.content())

    async def evaluate(self, expression: str) -> Any:
        page = self._require_page()
        with self._translated():
            return await page.evaluate(expression)

    async def wait_for_function(self, expression: str, *, timeout_ms: float) -> None:
        page = self._require_page()
        with self._translated():
            await page.wait_for_function(expression, timeout=timeout_ms)

    async def wait_for_selector(self, selector: str, *, timeout_ms: float) -> None:
        page = self._require_page()
        with self._translated():
            await page.wait_for_selector(selector, timeout=timeout_ms, state="visible")

    async def is_visible(self, selector: str) -> bool:
        page = self._require_page()
        with self._translated():
            return bool(await page.locator(selector).first.is_visible())

    async def click(self, selector: str, *, timeout_ms: float) -> None:
        page = self._require_page()
        with self._translated():
            await page.click(selector, timeout=timeout_ms)

    async def fill(self, selector: str, text: str, *, timeout_ms: float) -> None:
        page = self._require_page()
        with self._translated():
            await page.fill(selector, text, timeout=timeout_ms)

    async def screenshot(self, path: Path, *, full_page: bool = True) -> None:
        page = self._require_page()
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._translated():
            await page.screenshot(path=str(path), full_page=full_page)

    async def set_extra_headers(self, headers: dict[str, str]) -> None:
        page = self._require_page()
        with self._translated():
            await page.set_extra_http_headers(headers)

    async def storage_state(self) -> StorageState:
        if self._context is None:
            raise BrowserDriverError("Browser context is not running", retriable=False)
        with self._translated():
            return StorageState.from_dict(await self._context.storage_state())

    async def add_cookies(self, cookies: list[Cookie]) -> None:
        if self._context is None or not cookies:
            return
        payload = []
        for cookie in cookies:
            item = cookie.to_dict()
            item["sameSite"] = _SAME_SITE_VALUES.get(cookie.same_site.lower(), "Lax")
            if cookie.expires <= 0:
                item.pop("expires")
            payload.append(item)
        with self._translated():
            await self._context.add_cookies(payload)

    async def clear_cookies(self) -> None:
        if self._context is not None:
            with self._translated():
                await self._context.clear_cookies()

    def on_request(self, listener: RequestListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def new_context(self) -> None:
        if self._browser is None:
            raise BrowserDriverError("Browser is not running", retriable=False)
        with self._translated():
            if self._context is not None:
                await self._context.close()
            await self._open_context(None)

    async def _open_context(self, storage_state: StorageState | None) -> None:
        width, height = self.viewport
        options: dict[str, Any] = {"viewport": {"width": width, "height": height}}
        if storage_state is not None:
            options["storage_state"] = storage_state.to_dict()
        if self._record_video_dir is not None:
            self._record_video_dir.mkdir(parents=True, exist_ok=True)
            options["record_video_dir"] = str(self._record_video_dir)
        self._context = await self._browser.new_context(**options)
        self._page = await self._context.new_page()
        self._page.on("request", self._dispatch_request)

    @contextmanager
    def _translated(self) -> Iterator[None]:
        try:
            yield
        except Exception as exc:
            if self._error_type is not None and isinstance(exc, self._error_type):
                raise BrowserDriverError(str(exc)) from exc
            raise

    def _dispatch_request(self, request: Any) -> None:
        for listener in list(self._listeners):
            listener(str(request.url))

    def _require_page(self) -> Any:
        if self._page is None:
            raise BrowserDriverError("Browser page is not running; call start() first", retriable=False)
        return self._page


def _to_navigation_response(response: Any) -> NavigationResponse | None:
    if response is None:
        return None
    return NavigationResponse(
        status=int(response.status),
        status_text=str(response.status_text or ""),
        url=str(response.url),
    )
