import asyncio
import threading
import time
from pathlib import Path

import click
import pytest
from browser_fakes import FakeClock, FakeDriver

from vibearchitect.browser.auth import AuthSessionManager, console_auth_prompt, domain_of
from vibearchitect.browser.driver import Cookie, StorageState
from vibearchitect.browser.patterns import LoginPatterns
from vibearchitect.browser.sessions import SessionStorageManager


def _auth(tmp_path: Path, **kwargs: object) -> AuthSessionManager:
    return AuthSessionManager(SessionStorageManager(tmp_path / "sessions"), **kwargs)  # type: ignore[arg-type]


def test_login_pages_are_detected(tmp_path: Path) -> None:
    auth = _auth(tmp_path)

    assert auth.is_login_page("https://corp.okta.com/login") is True
    assert auth.is_login_page("https://app.example.com/login/") is True
    assert auth.is_login_page("https://sso.example.com/start") is True
    assert auth.is_login_page("https://app.example.com/oauth/authorize") is True
    assert auth.is_login_page("https://app.example.com/dashboard") is False
    assert auth.is_login_page("https://login.example.com/logout") is False


def test_extra_login_patterns_apply(tmp_path: Path) -> None:
    auth = _auth(tmp_path, login_patterns=LoginPatterns().extended(login=[r"/gate$"], not_login=[r"/bye"]))

    assert auth.is_login_page("https://app.example.com/gate") is True
    assert auth.is_login_page("https://login.example.com/bye") is False


def test_sso_provider_is_named(tmp_path: Path) -> None:
    auth = _auth(tmp_path)

    assert auth.get_sso_provider("https://corp.okta.com/app") == "Okta"
    assert auth.get_sso_provider("https://login.microsoftonline.com/common") == "Microsoft/Azure AD"
    assert auth.get_sso_provider("https://accounts.google.com/signin") == "Google"
    assert auth.get_sso_provider("https://app.example.com/login") is None
    assert auth.is_okta_login_page("https://corp.oktapreview.com/") is True
    assert auth.is_okta_login_page("https://accounts.google.com/") is False


def test_prompt_outcomes(tmp_path: Path) -> None:
    seen: list[tuple[str, str | None]] = []

    async def _yes(url: str, provider: str | None) -> bool:
        seen.append((url, provider))
        return True

    async def _no(url: str, provider: str | None) -> bool:
        return False

    async def _never(url: str, provider: str | None) -> bool:
        await asyncio.sleep(10)
        return True

    url = "https://corp.okta.com/login"
    assert asyncio.run(_auth(tmp_path, prompt=_yes).prompt_user_for_auth(url)) == "completed"
    assert seen == [(url, "Okta")]
    assert asyncio.run(_auth(tmp_path, prompt=_no).prompt_user_for_auth(url)) == "cancelled"
    assert asyncio.run(_auth(tmp_path, prompt=_never).prompt_user_for_auth(url, timeout=0.01)) == "timeout"


def test_redirect_wait_returns_once_off_login_page(tmp_path: Path) -> None:
    clock = FakeClock()
    auth = _auth(tmp_path, sleep=clock.sleep, clock=clock)
    driver = FakeDriver()
    driver.url_sequence = [
        "https://corp.okta.com/login",
        "https://corp.okta.com/login",
        "https://app.example.com/home",
    ]

    assert asyncio.run(auth.wait_for_auth_redirect(driver, timeout=60, poll_interval=1.0)) is True
    assert clock.sleeps == [1.0, 1.0]


def test_redirect_wait_times_out_on_login_page(tmp_path: Path) -> None:
    clock = FakeClock()
    auth = _auth(tmp_path, sleep=clock.sleep, clock=clock)
    driver = FakeDriver()
    driver.url = "https://corp.okta.com/login"

    assert asyncio.run(auth.wait_for_auth_redirect(driver, timeout=3, poll_interval=1.0)) is False
    assert clock.sleeps == [1.0, 1.0, 1.0]


def test_context_state_is_saved_for_current_domain(tmp_path: Path) -> None:
    auth = _auth(tmp_path)
    driver = FakeDriver()
    driver.url = "https://app.example.com/home"
    driver.state = StorageState(
        cookies=[
            Cookie("sid", "abc", "app.example.com"),
            Cookie("_gid", "x", "app.example.com"),
        ]
    )

    saved = asyncio.run(auth.save_context_state(driver))

    assert saved is not None
    assert saved.domain == "app.example.com"
    assert saved.name == "app.example.com session"
    assert saved.cookie_count == 1
    assert auth.has_saved_session("app.example.com") is True


def test_session_health_and_clearing(tmp_path: Path) -> None:
    auth = _auth(tmp_path)
    driver = FakeDriver()
    driver.url = "https://app.example.com/home"
    driver.state = StorageState(cookies=[Cookie("sid", "abc", "app.example.com")])

    missing = auth.get_session_health("app.example.com")
    asyncio.run(auth.save_context_state(driver))
    present = auth.get_session_health("app.example.com")

    assert missing.has_session is False
    assert missing.recommendations == ["No saved session found. Please log in."]
    assert present.has_session is True
    assert present.is_valid is True
    assert auth.clear_session("app.example.com") == 1
    assert auth.has_saved_session("app.example.com") is False
    assert auth.clear_expired_sessions() == 0


def test_domain_of_uses_hostname() -> None:
    assert domain_of("https://App.Example.com:8443/path?q=1") == "app.example.com"
    assert domain_of("not a url") == ""


def test_console_prompt_returns_the_answer(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    asked: list[str] = []

    def _confirm(message: str, default: bool = False) -> bool:
        asked.append(message)
        return False

    monkeypatch.setattr(click, "confirm", _confirm)
    auth = _auth(tmp_path, prompt=console_auth_prompt)

    assert asyncio.run(auth.prompt_user_for_auth("https://corp.okta.com/login")) == "cancelled"
    assert asked[0].startswith("Authentication required (Okta) at https://corp.okta.com/login.")


def test_console_prompt_timeout_does_not_wait_for_the_console(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    release = threading.Event()
    monkeypatch.setattr(click, "confirm", lambda message, default=False: release.wait(10))
    auth = _auth(tmp_path, prompt=console_auth_prompt, prompt_timeout=0.05)

    started = time.monotonic()
    try:
        result = asyncio.run(auth.prompt_user_for_auth("https://corp.okta.com/login"))
        elapsed = time.monotonic() - started
    finally:
        release.set()

    assert result == "timeout"
    assert elapsed < 5
