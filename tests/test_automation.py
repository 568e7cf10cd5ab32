import asyncio
import json
from pathlib import Path

import pytest
from browser_fakes import FakeClock, FakeDriver

from vibearchitect.browser.auth import AuthSessionManager
from vibearchitect.browser.automation import (
    MAX_CONTENT_LENGTH,
    TRUNCATION_MARKER,
    AutomationConfig,
    BrowserAutomationService,
    LoginCheckpoint,
)
from vibearchitect.browser.driver import BrowserDriverError, Cookie, StorageState
from vibearchitect.browser.page_load import PageLoadValidator, RetryConfig, WaitStrategy
from vibearchitect.browser.sessions import SessionStorageManager

URL = "https://app.example.com/reports"
LOGIN_URL = "https://corp.okta.com/login?from=app"


def _service(
    tmp_path: Path,
    driver: FakeDriver,
    clock: FakeClock,
    *,
    checkpoint: LoginCheckpoint | None = None,
    **overrides: object,
) -> BrowserAutomationService:
    sessions = SessionStorageManager(tmp_path / "sessions")
    auth = AuthSessionManager(sessions, sleep=clock.sleep, clock=clock)
    config = AutomationConfig(
        artifacts_dir=tmp_path / "artifacts",
        wait=WaitStrategy(network_quiet_ms=0),
        retry=RetryConfig(max_retries=0),
        redirect_timeout_seconds=3.0,
    )
    for name, value in overrides.items():
        setattr(config, name, value)
    return BrowserAutomationService(
        driver,
        sessions,
        auth,
        config=config,
        validator=PageLoadValidator(driver, sleep=clock.sleep, clock=clock),
        login_checkpoint=checkpoint,
        sleep=clock.sleep,
        clock=clock,
    )


def _launched(service: BrowserAutomationService) -> BrowserAutomationService:
    asyncio.run(service.launch())
    return service


def test_navigation_requires_a_launched_browser(tmp_path: Path) -> None:
    service = _service(tmp_path, FakeDriver(), FakeClock())

    with pytest.raises(BrowserDriverError, match="Browser not launched"):
        asyncio.run(service.navigate_to(URL))


def test_plain_navigation_succeeds(tmp_path: Path) -> None:
    driver = FakeDriver()
    service = _launched(_service(tmp_path, driver, FakeClock()))

    outcome = asyncio.run(service.navigate_to(URL))

    assert driver.calls[0] == "start:True"
    assert outcome.success is True
    assert outcome.message == f"Navigated to: {URL}"
    assert outcome.auth_required is False
    assert outcome.page_load is not None
    assert outcome.to_dict()["page_load"]["status"] == "loaded"


def test_failed_load_is_reported(tmp_path: Path) -> None:
    driver = FakeDriver()
    driver.statuses = [503]
    service = _launched(_service(tmp_path, driver, FakeClock()))

    outcome = asyncio.run(service.navigate_to(URL))

    assert outcome.success is False
    assert outcome.message == f"Failed to load {URL}: HTTP 503: Service Unavailable (error)"
    assert (tmp_path / "artifacts" / "failures").is_dir()


def test_login_checkpoint_completes_and_saves_session(tmp_path: Path) -> None:
    driver = FakeDriver()
    driver.redirects = {URL: LOGIN_URL}
    driver.state = StorageState(
        cookies=[
            Cookie("sid", "abc", "app.example.com"),
            Cookie("_ga", "GA1.2", "app.example.com"),
        ]
    )
    clock = FakeClock()
    prompts: list[tuple[str, str | None]] = []

    async def _checkpoint(url: str, provider: str | None) -> bool:
        prompts.append((url, provider))
        driver.url = URL
        return True

    service = _launched(_service(tmp_path, driver, clock, checkpoint=_checkpoint))
    outcome = asyncio.run(service.navigate_to(URL))

    assert prompts == [(LOGIN_URL, "Okta")]
    assert outcome.success is True
    assert outcome.auth_required is True
    assert outcome.auth_completed is True
    assert outcome.message == f"Authenticated and navigated to: {URL}"
    assert clock.sleeps == [2.0]
    assert outcome.saved_session is not None
    assert outcome.saved_session.domain == "app.example.com"
    assert outcome.saved_session.cookie_count == 1


def test_cancelled_login_is_an_auth_failure(tmp_path: Path) -> None:
    driver = FakeDriver()
    driver.redirects = {URL: LOGIN_URL}

    async def _decline(url: str, provider: str | None) -> bool:
        return False

    service = _launched(_service(tmp_path, driver, FakeClock(), checkpoint=_decline))
    outcome = asyncio.run(service.navigate_to(URL))

    assert outcome.success is False
    assert outcome.auth_required is True
    assert outcome.message == f"Authentication cancelled at {LOGIN_URL}"


def test_login_that_never_redirects_fails(tmp_path: Path) -> None:
    driver = FakeDriver()
    driver.redirects = {URL: LOGIN_URL}
    clock = FakeClock()

    async def _confirm(url: str, provider: str | None) -> bool:
        return True

    service = _launched(_service(tmp_path, driver, clock, checkpoint=_confirm))
    outcome = asyncio.run(service.navigate_to(URL))

    assert outcome.success is False
    assert outcome.auth_required is True
    assert outcome.auth_completed is False
    assert outcome.message == f"Authentication did not complete: still on login page {LOGIN_URL}"
    assert outcome.saved_session is None


def test_saved_session_is_restored_before_navigation(tmp_path: Path) -> None:
    driver = FakeDriver()
    service = _launched(_service(tmp_path, driver, FakeClock()))
    saved = service.sessions.save_session(
        StorageState(cookies=[Cookie("sid", "abc", "app.example.com")]), "app", "app.example.com"
    )
    assert saved is not None

    outcome = asyncio.run(service.navigate_to(URL))

    assert outcome.restored_session == saved
    assert [cookie.name for cookie in driver.added_cookies] == ["sid"]
    assert outcome.to_dict()["restored_session"] == saved.id


def test_session_restore_can_be_disabled(tmp_path: Path) -> None:
    driver = FakeDriver()
    service = _launched(_service(tmp_path, driver, FakeClock(), restore_sessions=False))
    service.sessions.save_session(
        StorageState(cookies=[Cookie("sid", "abc", "app.example.com")]), "app", "app.example.com"
    )

    outcome = asyncio.run(service.navigate_to(URL))

    assert outcome.restored_session is None
    assert driver.added_cookies == []


def test_page_content_is_truncated(tmp_path: Path) -> None:
    driver = FakeDriver()
    driver.page_content = "x" * (MAX_CONTENT_LENGTH + 10)
    service = _launched(_service(tmp_path, driver, FakeClock()))

    content = asyncio.run(service.get_page_content())

    assert len(content) == MAX_CONTENT_LENGTH + len(TRUNCATION_MARKER)
    assert content.endswith(TRUNCATION_MARKER)


def test_screenshot_is_written_to_artifacts(tmp_path: Path) -> None:
    driver = FakeDriver()
    service = _launched(_service(tmp_path, driver, FakeClock()))

    shot = asyncio.run(service.take_screenshot("reports", url=URL))

    assert shot.path is not None
    assert shot.path.parent == tmp_path / "artifacts"
    assert shot.path.name.startswith("reports_")
    assert shot.path.exists()
    assert shot.navigation is not None and shot.navigation.success is True


def test_page_actions_are_forwarded(tmp_path: Path) -> None:
    driver = FakeDriver()
    driver.missing_selectors = {"#gone"}
    service = _launched(_service(tmp_path, driver, FakeClock()))
    asyncio.run(service.navigate_to(URL))

    asyncio.run(service.click("#run"))
    asyncio.run(service.type_text("#query", "revenue"))
    found = asyncio.run(service.wait_for_selector("#run"))
    missing = asyncio.run(service.wait_for_selector("#gone", 100))
    evaluated = asyncio.run(service.evaluate("window.data"))

    assert "click:#run" in driver.calls
    assert "fill:#query=revenue" in driver.calls
    assert (found, missing) == (True, False)
    assert json.loads(evaluated) == {"ok": True, "items": [1, 2]}
    assert service.get_current_url() == URL
    assert asyncio.run(service.get_title()) == "Home"


def test_manual_session_save_and_close(tmp_path: Path) -> None:
    driver = FakeDriver()
    driver.state = StorageState(cookies=[Cookie("auth_token", "t", "app.example.com")])
    service = _launched(_service(tmp_path, driver, FakeClock()))
    asyncio.run(service.navigate_to(URL))

    saved = asyncio.run(service.save_session())
    asyncio.run(service.close())

    assert saved is not None
    assert saved.name == "app.example.com session"
    assert service.is_running is False


def test_rejected_session_restore_still_navigates(tmp_path: Path) -> None:
    driver = FakeDriver()
    driver.cookie_error = BrowserDriverError("Cookie domain rejected")
    service = _launched(_service(tmp_path, driver, FakeClock()))
    service.sessions.save_session(
        StorageState(cookies=[Cookie("sid", "abc", "app.example.com")]), "app", "app.example.com"
    )

    outcome = asyncio.run(service.navigate_to(URL))

    assert outcome.success is True
    assert outcome.restored_session is None
    assert f"goto:{URL}" in driver.calls


def test_failing_login_checkpoint_is_an_auth_failure(tmp_path: Path) -> None:
    driver = FakeDriver()
    driver.redirects = {URL: LOGIN_URL}

    async def _broken(url: str, provider: str | None) -> bool:
        raise RuntimeError("webview closed")

    service = _launched(_service(tmp_path, driver, FakeClock(), checkpoint=_broken))
    outcome = asyncio.run(service.navigate_to(URL))

    assert outcome.success is False
    assert outcome.auth_required is True
    assert outcome.message == f"Authentication failed at {LOGIN_URL}: webview closed"


def test_failing_auth_prompt_is_an_auth_failure(tmp_path: Path) -> None:
    driver = FakeDriver()
    driver.redirects = {URL: LOGIN_URL}
    clock = FakeClock()

    async def _aborted(url: str, provider: str | None) -> bool:
        raise EOFError("stdin closed")

    service = _launched(_service(tmp_path, driver, clock))
    service.auth.prompt = _aborted
    outcome = asyncio.run(service.navigate_to(URL))

    assert outcome.success is False
    assert outcome.auth_required is True
    assert outcome.message == f"Authentication failed at {LOGIN_URL}: stdin closed"
    assert clock.sleeps == []


def test_recorded_session_returns_video_on_close(tmp_path: Path) -> None:
    driver = FakeDriver()
    clock = FakeClock()
    clock.now = 1_700_000_000.0
    service = _service(tmp_path, driver, clock, recordings_dir=tmp_path / "recordings")

    asyncio.run(service.launch(record_video=True))
    assert service.is_recording is True
    assert driver.record_video_dir == tmp_path / "recordings"
    clock.now += 4.5
    recording = asyncio.run(service.close())

    assert recording is not None
    assert recording.path == tmp_path / "recordings" / "page.webm"
    assert recording.path.exists()
    assert recording.duration_ms == 4500
    assert recording.started_at == 1_700_000_000_000
    assert service.is_recording is False


def test_unrecorded_session_closes_without_video(tmp_path: Path) -> None:
    driver = FakeDriver()
    service = _launched(_service(tmp_path, driver, FakeClock()))

    assert service.is_recording is False
    assert driver.record_video_dir is None
    assert asyncio.run(service.close()) is None
