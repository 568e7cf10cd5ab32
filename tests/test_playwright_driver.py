import asyncio
from typing import Any

import pytest

from vibearchitect.browser.driver import BrowserDriverError
from vibearchitect.browser.playwright_driver import PlaywrightDriver


class EngineError(Exception):
    pass


class StubPage:
    url = "https://app.example.com/"

    async def goto(self, url: str, **kwargs: Any) -> None:
        raise EngineError("Timeout 30000ms exceeded.")

    async def title(self) -> str:
        raise ValueError("not an engine error")


def _driver() -> PlaywrightDriver:
    driver = PlaywrightDriver()
    driver._page = StubPage()  # noqa: SLF001
    driver._error_type = EngineError  # noqa: SLF001
    return driver


def test_engine_errors_become_driver_errors() -> None:
    with pytest.raises(BrowserDriverError, match="Timeout 30000ms exceeded") as caught:
        asyncio.run(_driver().goto("https://app.example.com/", timeout_ms=30000))

    assert caught.value.retriable is True
    assert isinstance(caught.value.__cause__, EngineError)


def test_other_errors_pass_through() -> None:
    with pytest.raises(ValueError, match="not an engine error"):
        asyncio.run(_driver().title())


def test_page_calls_require_a_started_browser() -> None:
    with pytest.raises(BrowserDriverError, match="call start\\(\\) first"):
        asyncio.run(PlaywrightDriver().content())
