from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from vibearchitect.browser.driver import BrowserDriver, BrowserDriverError
from vibearchitect.browser.patterns import ERROR_PAGE_PATTERNS, LOADING_SELECTORS

logger = logging.getLogger(__name__)

RetryStrategy = Literal[
    "refresh", "hard-refresh", "clear-cache", "clear-cookies", "wait-longer", "new-context"
]
PageLoadStatus = Literal["loaded", "partial", "timeout", "error", "blocked"]
CustomWait = Callable[[BrowserDriver], Awaitable[None]]
NavigationEventHook = Callable[[dict[str, Any]], None]
Sleep = Callable[[float], Awaitable[None]]

RETRY_STRATEGIES: tuple[str, ...] = (
    "refresh",
    "hard-refresh",
    "clear-cache",
    "clear-cookies",
    "wait-longer",
    "new-context",
)

NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

DOM_READY_EXPRESSION = "document.readyState === 'complete'"

JS_IDLE_EXPRESSION = """
new Promise(function(resolve) {
    if ('requestIdleCallback' in window) {
        window.requestIdleCallback(function() { resolve(true); }, { timeout: 1000 });
    } else {
        setTimeout(function() { resolve(true); }, 100);
    }
})
"""

INTERACTIVE_EXPRESSION = (
    "document.readyState === 'complete' && document.body !== null "
    "&& document.visibilityState === 'visible'"
)

BODY_CONTENT_EXPRESSION = """
(function() {
    var body = document.body;
    if (!body) return { hasContent: false, textLength: 0 };
    var text = body.innerText || '';
    var hasImages = body.querySelectorAll('img').length > 0;
    var hasButtons = body.querySelectorAll('button, [role="button"]').length > 0;
    return {
        hasContent: text.length > 50 || hasImages || hasButtons,
        textLength: text.length,
        hasImages: hasImages,
        hasButtons: hasButtons
    };
})()
"""

CLEAR_CACHE_STORAGE_EXPRESSION = """
if ('caches' in window) {
    caches.keys().then(function(names) {
        names.forEach(function(name) { caches.delete(name); });
    });
}
"""

DEFAULT_RETRY_STRATEGIES: tuple[str, ...] = ("refresh", "hard-refresh", "clear-cache")
NETWORK_POLL_SECONDS = 0.1
RELOAD_TIMEOUT_MS = 10000
WAIT_LONGER_SECONDS = 5.0


@dataclass(slots=True)
class WaitStrategy:
    wait_for_dom: bool = True
    selectors: tuple[str, ...] = ()
    network_quiet_ms: int = 500
    wait_for_js_idle: bool = True
    custom_wait: CustomWait | None = None
    timeout_ms: int = 30000


@dataclass(slots=True)
class RetryConfig:
    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2.0
    strategies: tuple[str, ...] = DEFAULT_RETRY_STRATEGIES


@dataclass(slots=True)
class NavigationOptions:
    url: str
    wait: WaitStrategy = field(default_factory=WaitStrategy)
    retry: RetryConfig = field(default_factory=RetryConfig)
    bypass_cache: bool = False
    screenshot_on_failure: bool = True
    screenshot_dir: Path | None = None
    headers: dict[str, str] = field(default_factory=dict)
    referer: str | None = None


@dataclass(frozen=True, slots=True)
class ValidationResult:
    name: str
    passed: bool
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PageLoadResult:
    success: bool
    url: str
    final_url: str
    load_time_ms: int
    retry_count: int
    status: PageLoadStatus
    http_status: int | None = None
    error: str | None = None
    screenshot_path: Path | None = None
    validations: list[ValidationResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "url": self.url,
            "final_url": self.final_url,
            "load_time_ms": self.load_time_ms,
            "retry_count": self.retry_count,
            "status": self.status,
            "http_status": self.http_status,
            "error": self.error,
            "screenshot_path": str(self.screenshot_path) if self.screenshot_path else None,
            "validations": [
                {"name": item.name, "passed": item.passed, "message": item.message}
                for item in self.validations
            ],
        }


def determine_failure_status(error: str) -> PageLoadStatus:
    if "timeout" in error or "Timeout" in error:
        return "timeout"
    if "ERR_BLOCKED" in error or "blocked" in error:
        return "blocked"
    if "Validation failed" in error:
        return "partial"
    return "error"


class PageLoadValidator:
    """Navigates with wait strategies, page validations and retry strategies."""

    def __init__(
        self,
        driver: BrowserDriver,
        *,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        event_hook: NavigationEventHook | None = None,
    ) -> None:
        self.driver = driver
        self._sleep = sleep
        self._clock = clock
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    async def navigate_with_validation(self, options: NavigationOptions) -> PageLoadResult:
        retry = options.retry
        retry_count = 0
        delay_ms = float(retry.initial_delay_ms)

        while True:
            started = self._clock()
            http_status: int | None = None
            try:
                logger.info("Navigating to %s (attempt %d)", options.url, retry_count + 1)
                await self._apply_headers(options)
                response = await self.driver.goto(
                    options.url, timeout_ms=options.wait.timeout_ms, wait_until="domcontentloaded"
                )
                if response is not None:
                    http_status = response.status
                    if response.status >= 400:
                        raise BrowserDriverError(f"HTTP {response.status}: {response.status_text}")

                await self.apply_wait_strategy(options.wait)

                validations = await self.validate_page_load()
                failed = [item.name for item in validations if not item.passed]
                if failed:
                    raise BrowserDriverError(f"Validation failed: {', '.join(failed)}")

                return PageLoadResult(
                    success=True,
                    url=options.url,
                    final_url=self._safe_current_url(),
                    load_time_ms=self._elapsed_ms(started),
                    retry_count=retry_count,
                    status="loaded",
                    http_status=http_status,
                    validations=validations,
                )
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                logger.warning("Attempt %d for %s failed: %s", retry_count + 1, options.url, error)
                self._emit(
                    {
                        "event": "navigation_attempt_failed",
                        "url": options.url,
                        "attempt": retry_count,
                        "error": error,
                    }
                )

                screenshot_path: Path | None = None
                if options.screenshot_on_failure and options.screenshot_dir is not None:
                    screenshot_path = await self._take_failure_screenshot(
                        options.screenshot_dir, retry_count
                    )

                retriable = not isinstance(exc, BrowserDriverError) or exc.retriable
                if retriable and retry_count < retry.max_retries:
                    strategies = retry.strategies or DEFAULT_RETRY_STRATEGIES
                    strategy = strategies[retry_count % len(strategies)]
                    logger.info("Applying retry strategy %s, waiting %.0fms", strategy, delay_ms)
                    self._emit(
                        {
                            "event": "navigation_retry",
                            "url": options.url,
                            "attempt": retry_count + 1,
                            "strategy": strategy,
                            "delay_ms": delay_ms,
                        }
                    )
                    await self.apply_retry_strategy(strategy)
                    await self._sleep(delay_ms / 1000)
                    delay_ms = min(delay_ms * retry.backoff_multiplier, float(retry.max_delay_ms))
                    retry_count += 1
                    continue

                logger.warning(
                    "Giving up on %s after %d retries: %s", options.url, retry_count, error
                )
                return PageLoadResult(
                    success=False,
                    url=options.url,
                    final_url=self._safe_current_url(),
                    load_time_ms=self._elapsed_ms(started),
                    retry_count=retry_count,
                    status=determine_failure_status(error),
                    http_status=http_status,
                    error=error,
                    screenshot_path=screenshot_path,
                    validations=await self.validate_page_load(),
                )

    async def apply_wait_strategy(self, strategy: WaitStrategy) -> None:
        timeout_ms = strategy.timeout_ms or 30000
        if strategy.wait_for_dom:
            await self.driver.wait_for_function(DOM_READY_EXPRESSION, timeout_ms=timeout_ms)
        if strategy.selectors:
            await self._wait_for_selectors(strategy.selectors, timeout_ms)
        if strategy.network_quiet_ms:
            await self.wait_for_network_quiet(strategy.network_quiet_ms, timeout_ms)
        if strategy.wait_for_js_idle:
            try:
                await self.driver.wait_for_function(JS_IDLE_EXPRESSION, timeout_ms=timeout_ms)
            except Exception as exc:
                logger.debug("JS idle check did not settle: %s", exc)
        if strategy.custom_wait is not None:
            try:
                await asyncio.wait_for(strategy.custom_wait(self.driver), timeout=timeout_ms / 1000)
            except TimeoutError:
                logger.warning("Custom wait did not finish within %dms", timeout_ms)

    async def _wait_for_selectors(self, selectors: Sequence[str], timeout_ms: int) -> None:
        per_selector = timeout_ms // len(selectors)
        for selector in selectors:
            try:
                await self.driver.wait_for_selector(selector, timeout_ms=per_selector)
            except Exception:
                logger.warning("Selector not found: %s", selector)

    async def wait_for_network_quiet(self, quiet_ms: int, timeout_ms: int) -> None:
        started = self._clock()
        last_request = started

        def _on_request(_url: str) -> None:
            nonlocal last_request
            last_request = self._clock()

        unsubscribe = self.driver.on_request(_on_request)
        try:
            while True:
                await self._sleep(NETWORK_POLL_SECONDS)
                now = self._clock()
                if (now - last_request) * 1000 >= quiet_ms:
                    return
                if (now - started) * 1000 >= timeout_ms:
                    logger.debug("Network never went quiet within %dms", timeout_ms)
                    return
        finally:
            unsubscribe()

    async def validate_page_load(self) -> list[ValidationResult]:
        return [
            await self._validate_no_error_page(),
            await self._validate_not_stuck_loading(),
            await self._validate_visible_content(),
            self._validate_no_console_errors(),
        ]

    async def _validate_no_error_page(self) -> ValidationResult:
        try:
            content = await self.driver.content()
            title = await self.driver.title()
        except Exception as exc:
            return ValidationResult("no-error-page", False, f"Failed to check page: {exc}")
        for pattern in ERROR_PAGE_PATTERNS:
            if pattern.search(content) or pattern.search(title):
                return ValidationResult(
                    "no-error-page", False, f"Error page detected: {pattern.pattern}"
                )
        return ValidationResult("no-error-page", True)

    async def _validate_not_stuck_loading(self) -> ValidationResult:
        try:
            for selector in LOADING_SELECTORS:
                if await self.driver.is_visible(selector):
                    return ValidationResult(
                        "not-stuck-loading", False, f"Loading indicator still visible: {selector}"
                    )
        except Exception as exc:
            logger.debug("Loading indicator check failed: %s", exc)
        return ValidationResult("not-stuck-loading", True)

    async def _validate_visible_content(self) -> ValidationResult:
        try:
            body = await self.driver.evaluate(BODY_CONTENT_EXPRESSION)
        except Exception as exc:
            return ValidationResult("visible-content", False, f"Failed to check content: {exc}")
        details = dict(body) if isinstance(body, dict) else {}
        if not details.get("hasContent"):
            return ValidationResult(
                "visible-content", False, "Page appears empty or has minimal content", details
            )
        return ValidationResult("visible-content", True, details=details)

    def _validate_no_console_errors(self) -> ValidationResult:
        # Console capture is not wired up; the check always passes.
        return ValidationResult("no-console-errors", True)

    async def apply_retry_strategy(self, strategy: str) -> None:
        try:
            if strategy == "refresh":
                await self.driver.reload(timeout_ms=RELOAD_TIMEOUT_MS)
            elif strategy == "hard-refresh":
                await self.driver.evaluate(CLEAR_CACHE_STORAGE_EXPRESSION)
                await self.driver.reload(timeout_ms=RELOAD_TIMEOUT_MS)
            elif strategy in {"clear-cache", "clear-cookies"}:
                await self.driver.clear_cookies()
            elif strategy == "wait-longer":
                await self._sleep(WAIT_LONGER_SECONDS)
            elif strategy == "new-context":
                await self.driver.new_context()
            else:
                logger.warning("Unknown retry strategy: %s", strategy)
        except Exception as exc:
            logger.debug("Retry strategy %s failed: %s", strategy, exc)

    async def bypass_cache(self, headers: dict[str, str] | None = None) -> None:
        await self.driver.set_extra_headers({**(headers or {}), **NO_CACHE_HEADERS})

    async def wait_for_interactive(self, timeout_ms: int = 10000) -> bool:
        try:
            await self.driver.wait_for_function(INTERACTIVE_EXPRESSION, timeout_ms=timeout_ms)
        except Exception:
            return False
        return True

    async def _apply_headers(self, options: NavigationOptions) -> None:
        headers = dict(options.headers)
        if options.referer:
            headers["Referer"] = options.referer
        if options.bypass_cache:
            await self.bypass_cache(headers)
        elif headers:
            await self.driver.set_extra_headers(headers)

    async def _take_failure_screenshot(self, directory: Path, retry_count: int) -> Path | None:
        path = directory / f"failure_{int(time.time() * 1000)}_retry{retry_count}.png"
        try:
            await self.driver.screenshot(path, full_page=True)
        except Exception as exc:
            logger.debug("Failure screenshot not captured: %s", exc)
            return None
        logger.info("Failure screenshot saved: %s", path)
        return path

    def _safe_current_url(self) -> str:
        try:
            return self.driver.current_url()
        except BrowserDriverError:
            return ""

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)
