from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import urlparse

import click

from vibearchitect.browser.driver import BrowserDriver
from vibearchitect.browser.patterns import OKTA_PATTERN, LoginPatterns, matches_any
from vibearchitect.browser.sessions import SavedSession, SessionStorageManager

logger = logging.getLogger(__name__)

AuthPromptResult = Literal["completed", "cancelled", "timeout"]
# Receives the login URL and the detected provider; True means the user finished logging in.
AuthPrompt = Callable[[str, str | None], Awaitable[bool]]
Sleep = Callable[[float], Awaitable[None]]

AUTH_PROMPT_TIMEOUT_SECONDS = 300.0


async def console_auth_prompt(url: str, provider: str | None) -> bool:
    provider_text = f" ({provider})" if provider else ""
    message = (
        f"Authentication required{provider_text} at {url}.\n"
        "Complete the login in the browser window. Have you logged in?"
    )
    loop = asyncio.get_running_loop()
    answer: asyncio.Future[bool] = loop.create_future()

    def _settle(confirmed: bool | None, error: BaseException | None) -> None:
        if answer.done():
            return
        if error is not None:
            answer.set_exception(error)
        else:
            answer.set_result(bool(confirmed))

    def _ask() -> None:
        # Daemon thread: a prompt abandoned on timeout must not hold up loop shutdown.
        try:
            confirmed = click.confirm(message, default=True)
        except Exception as exc:
            outcome: tuple[bool | None, BaseException | None] = (None, exc)
        else:
            outcome = (confirmed, None)
        try:
            loop.call_soon_threadsafe(_settle, *outcome)
        except RuntimeError:
            logger.debug("Auth prompt answered after the event loop closed")

    threading.Thread(target=_ask, name="auth-prompt", daemon=True).start()
    return await answer


def domain_of(url: str) -> str:
    return urlparse(url).hostname or ""


@dataclass(slots=True)
class SessionHealthReport:
    has_session: bool
    is_valid: bool
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_session": self.has_session,
            "is_valid": self.is_valid,
            "recommendations": list(self.recommendations),
        }


class AuthSessionManager:
    """Detects login walls and coordinates the human login step."""

    def __init__(
        self,
        sessions: SessionStorageManager,
        *,
        prompt: AuthPrompt | None = None,
        login_patterns: LoginPatterns | None = None,
        prompt_timeout: float = AUTH_PROMPT_TIMEOUT_SECONDS,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.sessions = sessions
        self.prompt = prompt or console_auth_prompt
        self.login_patterns = login_patterns or LoginPatterns()
        self.prompt_timeout = prompt_timeout
        self._sleep = sleep
        self._clock = clock

    def is_login_page(self, url: str) -> bool:
        if matches_any(self.login_patterns.not_login, url):
            return False
        return matches_any(self.login_patterns.login, url)

    def is_okta_login_page(self, url: str) -> bool:
        return OKTA_PATTERN.search(url) is not None

    def get_sso_provider(self, url: str) -> str | None:
        for pattern, name in self.login_patterns.providers:
            if pattern.search(url):
                return name
        return None

    async def prompt_user_for_auth(
        self, url: str, timeout: float | None = None
    ) -> AuthPromptResult:
        provider = self.get_sso_provider(url)
        limit = self.prompt_timeout if timeout is None else timeout
        logger.info("Waiting for user to authenticate at %s (provider=%s)", url, provider)
        try:
            completed = await asyncio.wait_for(self.prompt(url, provider), timeout=limit)
        except TimeoutError:
            logger.warning("Authentication prompt timed out after %.1fs", limit)
            return "timeout"
        return "completed" if completed else "cancelled"

    async def wait_for_auth_redirect(
        self,
        driver: BrowserDriver,
        timeout: float = AUTH_PROMPT_TIMEOUT_SECONDS,
        poll_interval: float = 1.0,
    ) -> bool:
        started = self._clock()
        while True:
            try:
                current = driver.current_url()
            except Exception as exc:
                logger.debug("URL unavailable while waiting for redirect: %s", exc)
            else:
                if not self.is_login_page(current):
                    logger.info("Authentication completed, redirected to %s", current)
                    return True
            if self._clock() - started >= timeout:
                logger.warning("Still on a login page after %.1fs", timeout)
                return False
            await self._sleep(poll_interval)

    async def save_context_state(
        self, driver: BrowserDriver, domain: str | None = None
    ) -> SavedSession | None:
        target = domain
        if not target:
            try:
                target = domain_of(driver.current_url())
            except Exception:
                target = ""
        target = target or "unknown"
        try:
            state = await driver.storage_state()
        except Exception as exc:
            logger.warning("Failed to capture storage state for %s: %s", target, exc)
            return None
        return self.sessions.save_session(state, f"{target} session", target, filter_auth_only=True)

    def has_saved_session(self, domain: str) -> bool:
        session = self.sessions.get_session_for_domain(domain)
        return session is not None and self.sessions.is_session_valid(session.id)

    def clear_session(self, domain: str) -> int:
        count = self.sessions.delete_sessions_for_domain(domain)
        logger.info("Cleared %d sessions for %s", count, domain)
        return count

    def clear_expired_sessions(self) -> int:
        return self.sessions.clear_expired_sessions()

    def get_session_health(self, domain: str) -> SessionHealthReport:
        session = self.sessions.get_session_for_domain(domain)
        if session is None:
            return SessionHealthReport(
                has_session=False,
                is_valid=False,
                recommendations=["No saved session found. Please log in."],
            )
        health = self.sessions.analyze_session_health(session.id)
        return SessionHealthReport(
            has_session=True, is_valid=health.is_valid, recommendations=health.recommendations
        )
