from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vibearchitect.browser.auth import AuthPromptResult, AuthSessionManager, domain_of
from vibearchitect.browser.driver import BrowserDriver, BrowserDriverError
from vibearchitect.browser.page_load import (
    NavigationOptions,
    PageLoadResult,
    PageLoadValidator,
    RetryConfig,
    WaitStrategy,
)
from vibearchitect.browser.sessions import SavedSession, SessionStorageManager

logger = logging.getLogger(__name__)

# Receives the login URL and the detected provider; resolves once the user acts.
LoginCheckpoint = Callable[[str, str | None], Awaitable[bool]]
Sleep = Callable[[float], Awaitable[None]]

MAX_CONTENT_LENGTH = 50000
TRUNCATION_MARKER = "\n... [TRUNCATED]"


@dataclass(slots=True)
class AutomationConfig:
    headless: bool = True
    artifacts_dir: Path = Path(".vibearch/artifacts")
    recordings_dir: Path = Path(".vibearch/recordings")
    wait: WaitStrategy = field(default_factory=WaitStrategy)
    retry: RetryConfig = field(default_factory=RetryConfig)
    screenshot_on_failure: bool = True
    redirect_settle_seconds: float = 2.0
    redirect_timeout_seconds: float = 60.0
    redirect_poll_seconds: float = 1.0
    action_timeout_ms: int = 5000
    restore_sessions: bool = True
    filter_auth_only: bool = True


@dataclass(slots=True)
class NavigationOutcome:
    success: bool
    url: str
    final_url: str
    message: str
    auth_required: bool = False
    auth_completed: bool = False
    page_load: PageLoadResult | None = None
    restored_session: SavedSession | None = None
    saved_session: SavedSession | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "url": self.url,
            "final_url": self.final_url,
            "message": self.message,
            "auth_required": self.auth_required,
            "auth_completed": self.auth_completed,
            "page_load": self.page_load.to_dict() if self.page_load else None,
            "restored_session": self.restored_session.id if self.restored_session else None,
            "saved_session": self.saved_session.id if self.saved_session else None,
        }


@dataclass(slots=True)
class ScreenshotResult:
    path: Path | None
    timestamp: int
    navigation: NavigationOutcome | None = None


@dataclass(frozen=True, slots=True)
class RecordingResult:
    path: Path
    duration_ms: int
    started_at: int

    def to_dict(self) -> dict[str, Any]:
        return {"path": str(self.path), "duration_ms": self.duration_ms, "started_at": self.started_at}


class BrowserAutomationService:
    """One browser page with session restore, validated navigation and login handling."""

    def __init__(
        self,
        driver: BrowserDriver,
        sessions: SessionStorageManager,
        auth: AuthSessionManager,
        *,
        config: AutomationConfig | None = None,
        validator: PageLoadValidator | None = None,
        login_checkpoint: LoginCheckpoint | None = None,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.driver = driver
        self.sessions = sessions
        self.auth = auth
        self.config = config or AutomationConfig()
        self.validator = validator or PageLoadValidator(driver, sleep=sleep)
        self.login_checkpoint = login_checkpoint
        self._sleep = sleep
        self._clock = clock
        self._recording_started: float | None = None

    @property
    def is_running(self) -> bool:
        return self.driver.is_running

    @property
    def is_recording(self) -> bool:
        return self._recording_started is not None

    async def launch(self, record_video: bool = False) -> None:
        recordings_dir: Path | None = None
        if record_video:
            recordings_dir = self.config.recordings_dir
            recordings_dir.mkdir(parents=True, exist_ok=True)
        await self.driver.start(headless=self.config.headless, record_video_dir=recordings_dir)
        if recordings_dir is not None:
            self._recording_started = self._clock()
            logger.info("Browser launched with video recording into %s", recordings_dir)
        else:
            logger.info("Browser launched (headless=%s)", self.config.headless)

    async def close(self) -> RecordingResult | None:
        started = self._recording_started
        self._recording_started = None
        video = await self.driver.close()
        if started is None or video is None:
            return None
        recording = RecordingResult(
            path=video,
            duration_ms=int((self._clock() - started) * 1000),
            started_at=int(started * 1000),
        )
        logger.info("Recording saved: %s (%dms)", recording.path, recording.duration_ms)
        return recording

    def set_login_checkpoint(self, checkpoint: LoginCheckpoint | None) -> None:
        self.login_checkpoint = checkpoint

    async def navigate_to(self, url: str) -> NavigationOutcome:
        self._require_running()
        restored = await self._restore_session(domain_of(url))

        page_load = await self.validator.navigate_with_validation(
            NavigationOptions(
                url=url,
                wait=self.config.wait,
                retry=self.config.retry,
                screenshot_on_failure=self.config.screenshot_on_failure,
                screenshot_dir=self.config.artifacts_dir / "failures",
            )
        )
        current = self._current_url_or(page_load.final_url)

        if self.auth.is_login_page(current):
            outcome = await self._handle_login(url, current, page_load)
            outcome.restored_session = restored
            return outcome

        if not page_load.success:
            return NavigationOutcome(
                success=False,
                url=url,
                final_url=current,
                message=f"Failed to load {url}: {page_load.error} ({page_load.status})",
                page_load=page_load,
                restored_session=restored,
            )
        return NavigationOutcome(
            success=True,
            url=url,
            final_url=current,
            message=f"Navigated to: {current}",
            page_load=page_load,
            restored_session=restored,
        )

    async def _handle_login(
        self, url: str, login_url: str, page_load: PageLoadResult
    ) -> NavigationOutcome:
        provider = self.auth.get_sso_provider(login_url)
        logger.info("Login page detected at %s (provider=%s)", login_url, provider)

        result: AuthPromptResult
        try:
            if self.login_checkpoint is not None:
                confirmed = await self.login_checkpoint(login_url, provider)
                result = "completed" if confirmed else "cancelled"
            else:
                result = await self.auth.prompt_user_for_auth(login_url)
        except Exception as exc:
            logger.warning("Login confirmation failed at %s: %s", login_url, exc)
            return NavigationOutcome(
                success=False,
                url=url,
                final_url=login_url,
                message=f"Authentication failed at {login_url}: {exc}",
                auth_required=True,
                page_load=page_load,
            )

        if result != "completed":
            return NavigationOutcome(
                success=False,
                url=url,
                final_url=login_url,
                message=f"Authentication {result} at {login_url}",
                auth_required=True,
                page_load=page_load,
            )

        await self._sleep(self.config.redirect_settle_seconds)
        redirected = await self.auth.wait_for_auth_redirect(
            self.driver,
            timeout=self.config.redirect_timeout_seconds,
            poll_interval=self.config.redirect_poll_seconds,
        )
        final_url = self._current_url_or(login_url)
        if not redirected:
            return NavigationOutcome(
                success=False,
                url=url,
                final_url=final_url,
                message=f"Authentication did not complete: still on login page {final_url}",
                auth_required=True,
                page_load=page_load,
            )

        saved = await self.auth.save_context_state(self.driver, domain_of(final_url))
        return NavigationOutcome(
            success=True,
            url=url,
            final_url=final_url,
            message=f"Authenticated and navigated to: {final_url}",
            auth_required=True,
            auth_completed=True,
            page_load=page_load,
            saved_session=saved,
        )

    async def take_screenshot(self, name: str | None = None, url: str | None = None) -> ScreenshotResult:
        self._require_running()
        navigation: NavigationOutcome | None = None
        if url:
            navigation = await self.navigate_to(url)
            if not navigation.success:
                return ScreenshotResult(path=None, timestamp=int(time.time() * 1000), navigation=navigation)

        timestamp = int(time.time() * 1000)
        path = self.config.artifacts_dir / f"{name or 'screenshot'}_{timestamp}.png"
        await self.driver.screenshot(path, full_page=True)
        logger.info("Screenshot saved: %s", path)
        return ScreenshotResult(path=path, timestamp=timestamp, navigation=navigation)

    async def click(self, selector: str) -> None:
        self._require_running()
        await self.driver.click(selector, timeout_ms=self.config.action_timeout_ms)

    async def type_text(self, selector: str, text: str) -> None:
        self._require_running()
        await self.driver.fill(selector, text, timeout_ms=self.config.action_timeout_ms)

    async def wait_for_selector(self, selector: str, timeout_ms: int | None = None) -> bool:
        self._require_running()
        try:
            await self.driver.wait_for_selector(
                selector, timeout_ms=timeout_ms or self.config.action_timeout_ms
            )
        except Exception as exc:
            logger.info("Selector %s did not appear: %s", selector, exc)
            return False
        return True

    async def get_page_content(self) -> str:
        self._require_running()
        content = await self.driver.content()
        if len(content) > MAX_CONTENT_LENGTH:
            return content[:MAX_CONTENT_LENGTH] + TRUNCATION_MARKER
        return content

    def get_current_url(self) -> str:
        self._require_running()
        return self.driver.current_url()

    async def get_title(self) -> str:
        self._require_running()
        return await self.driver.title()

    async def evaluate(self, script: str) -> str:
        self._require_running()
        result = await self.driver.evaluate(script)
        return json.dumps(result, indent=2, default=str)

    async def reload(self) -> None:
        self._require_running()
        await self.driver.reload(timeout_ms=self.config.wait.timeout_ms)

    async def save_session(self, name: str | None = None) -> SavedSession | None:
        self._require_running()
        domain = domain_of(self.driver.current_url()) or "unknown"
        state = await self.driver.storage_state()
        return self.sessions.save_session(
            state, name or f"{domain} session", domain, filter_auth_only=self.config.filter_auth_only
        )

    async def clear_cookies(self) -> None:
        self._require_running()
        await self.driver.clear_cookies()

    async def _restore_session(self, domain: str) -> SavedSession | None:
        if not self.config.restore_sessions or not domain:
            return None
        saved = self.sessions.get_session_for_domain(domain)
        if saved is None or not self.sessions.is_session_valid(saved.id):
            return None
        try:
            applied = await self.sessions.apply_session(self.driver, saved.id)
        except Exception as exc:
            logger.warning("Could not restore session %s for %s: %s", saved.id, domain, exc)
            return None
        if not applied:
            return None
        return saved

    def _current_url_or(self, fallback: str) -> str:
        try:
            return self.driver.current_url() or fallback
        except BrowserDriverError:
            return fallback

    def _require_running(self) -> None:
        if not self.driver.is_running:
            raise BrowserDriverError("Browser not launched. Call launch() first.", retriable=False)
