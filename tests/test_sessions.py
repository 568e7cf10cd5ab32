import asyncio
import json
from pathlib import Path

from browser_fakes import FakeDriver

from vibearchitect.browser.driver import Cookie, StorageOrigin, StorageState
from vibearchitect.browser.patterns import SessionPatterns, compile_patterns
from vibearchitect.browser.sessions import SessionFilterConfig, SessionStorageManager

NOW = 1_700_000_000.0


class MutableClock:
    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _browser_state() -> StorageState:
    return StorageState(
        cookies=[
            Cookie("session_id", "abc", "app.example.com", expires=NOW + 3600, http_only=True, secure=True),
            Cookie("_ga", "GA1.2", "app.example.com", expires=NOW + 86400),
            Cookie("x", "1", "foo.okta.com"),
            Cookie("plain", "v", "app.example.com"),
            Cookie("opaque", "v", "app.example.com", http_only=True, secure=True),
            Cookie("theme", "dark", "app.example.com", http_only=True, secure=True),
        ],
        origins=[
            StorageOrigin(
                "https://app.example.com",
                [("auth_token", "t"), ("persist:root", "{}"), ("ui.sidebar", "open")],
            ),
            StorageOrigin("https://cdn.example.com", [("recent_searches", "[]")]),
        ],
    )


def test_auth_filter_keeps_only_login_material(tmp_path: Path) -> None:
    manager = SessionStorageManager(tmp_path)

    filtered = manager.filter_auth_only(_browser_state())

    assert [cookie.name for cookie in filtered.cookies] == ["session_id", "x", "opaque"]
    assert len(filtered.origins) == 1
    assert filtered.origins[0].local_storage == [("auth_token", "t")]


def test_extra_patterns_extend_the_catalogs(tmp_path: Path) -> None:
    patterns = SessionPatterns().extended(auth_cookies=["^corp_"], sso_domains=[r"\.corp-sso\.net$"])
    manager = SessionStorageManager(tmp_path, patterns=patterns)

    assert manager.is_auth_cookie(Cookie("corp_ticket", "v", "intranet.example.com")) is True
    assert manager.is_auth_cookie(Cookie("anything", "v", "login.corp-sso.net")) is True
    assert manager.is_auth_cookie(Cookie("anything", "v", "intranet.example.com")) is False


def test_configured_filter_applies_includes_and_excludes(tmp_path: Path) -> None:
    manager = SessionStorageManager(tmp_path)
    config = SessionFilterConfig(
        include_domains=compile_patterns([r"example\.com$"]),
        exclude_cookies=compile_patterns(["^_ga"]),
        include_local_storage=compile_patterns(["token"]),
    )

    filtered = manager.filter_with_config(_browser_state(), config)

    assert [cookie.name for cookie in filtered.cookies] == ["session_id", "plain", "opaque", "theme"]
    assert [origin.origin for origin in filtered.origins] == ["https://app.example.com"]


def test_saved_session_is_indexed_and_reloadable(tmp_path: Path) -> None:
    manager = SessionStorageManager(tmp_path, clock=MutableClock())

    saved = manager.save_session(_browser_state(), "app session", "app.example.com")

    assert saved is not None
    assert saved.id.startswith(f"app_example_com_{int(NOW * 1000)}_")
    assert saved.cookie_count == 3
    assert saved.expires_at == NOW + 3600
    assert saved.local_storage_keys == ["auth_token"]
    assert manager.session_path(saved.id).exists()
    assert not list(tmp_path.glob("*.tmp"))

    index = json.loads(manager.index_path.read_text(encoding="utf-8"))
    assert [item["id"] for item in index] == [saved.id]

    reopened = SessionStorageManager(tmp_path, clock=MutableClock())
    state = reopened.load_session(saved.id)
    assert reopened.get_session(saved.id) == saved
    assert state is not None
    assert [cookie.name for cookie in state.cookies] == ["session_id", "x", "opaque"]
    assert state.cookies[0].http_only is True


def test_unfiltered_save_keeps_everything(tmp_path: Path) -> None:
    manager = SessionStorageManager(tmp_path, clock=MutableClock())

    saved = manager.save_session(_browser_state(), "raw", "app.example.com", filter_auth_only=False)

    assert saved is not None
    assert saved.cookie_count == 6


def test_domain_lookup_matches_either_direction_and_prefers_newest(tmp_path: Path) -> None:
    clock = MutableClock()
    manager = SessionStorageManager(tmp_path, clock=clock)
    older = manager.save_session(_browser_state(), "old", "example.com")
    clock.now += 10
    newer = manager.save_session(_browser_state(), "new", "app.example.com")

    assert older is not None and newer is not None
    assert manager.get_session_for_domain("example.com") == newer
    assert manager.get_session_for_domain("app.example.com") == newer
    assert manager.get_session_for_domain("other.org") is None
    assert [session.id for session in manager.get_all_sessions()] == [newer.id, older.id]


def test_expired_sessions_are_ignored_and_cleared(tmp_path: Path) -> None:
    clock = MutableClock()
    manager = SessionStorageManager(tmp_path, clock=clock)
    saved = manager.save_session(_browser_state(), "app", "app.example.com")
    assert saved is not None
    assert manager.is_session_valid(saved.id) is True

    clock.now = NOW + 3600
    assert manager.get_session_for_domain("app.example.com") is None
    assert manager.is_session_valid(saved.id) is False

    assert manager.clear_expired_sessions() == 1
    assert manager.get_all_sessions() == []
    assert not manager.session_path(saved.id).exists()


def test_session_without_file_is_invalid(tmp_path: Path) -> None:
    manager = SessionStorageManager(tmp_path, clock=MutableClock())
    saved = manager.save_session(_browser_state(), "app", "app.example.com")
    assert saved is not None

    manager.session_path(saved.id).unlink()

    assert manager.is_session_valid(saved.id) is False
    assert manager.load_session(saved.id) is None
    health = manager.analyze_session_health(saved.id)
    assert health.is_valid is False
    assert health.recommendations == ["Session file not found. Please log in again."]


def test_health_reports_expired_cookies(tmp_path: Path) -> None:
    manager = SessionStorageManager(tmp_path, clock=MutableClock())
    state = StorageState(
        cookies=[
            Cookie("sessionid", "old", "app.example.com", expires=NOW - 10),
            Cookie("_ga", "GA1.2", "app.example.com"),
        ]
    )
    saved = manager.save_session(state, "stale", "app.example.com", filter_auth_only=False)
    assert saved is not None

    health = manager.analyze_session_health(saved.id)

    assert health.is_valid is False
    assert health.expired_cookies == 1
    assert health.valid_cookies == 1
    assert health.recommendations == ["1 cookies have expired. Re-authenticate recommended."]


def test_health_flags_missing_auth_cookies(tmp_path: Path) -> None:
    manager = SessionStorageManager(tmp_path, clock=MutableClock())
    state = StorageState(cookies=[Cookie("_ga", "GA1.2", "app.example.com")])
    saved = manager.save_session(state, "tracking", "app.example.com", filter_auth_only=False)
    assert saved is not None

    health = manager.analyze_session_health(saved.id)

    assert health.is_valid is True
    assert health.recommendations == ["No session/auth cookies found. Authentication may have failed."]


def test_domain_delete_removes_parent_domain_sessions(tmp_path: Path) -> None:
    manager = SessionStorageManager(tmp_path, clock=MutableClock())
    manager.save_session(_browser_state(), "parent", "example.com")
    manager.save_session(_browser_state(), "app", "app.example.com")
    manager.save_session(_browser_state(), "other", "other.org")

    assert manager.delete_sessions_for_domain("app.example.com") == 2
    assert [session.domain for session in manager.get_all_sessions()] == ["other.org"]


def test_apply_session_adds_cookies_to_driver(tmp_path: Path) -> None:
    manager = SessionStorageManager(tmp_path, clock=MutableClock())
    saved = manager.save_session(_browser_state(), "app", "app.example.com")
    assert saved is not None
    driver = FakeDriver()

    assert asyncio.run(manager.apply_session(driver, saved.id)) is True
    assert [cookie.name for cookie in driver.added_cookies] == ["session_id", "x", "opaque"]
    assert asyncio.run(manager.apply_session(driver, "missing")) is False


def test_corrupt_index_starts_empty(tmp_path: Path) -> None:
    (tmp_path / "index.json").write_text("[{broken", encoding="utf-8")

    manager = SessionStorageManager(tmp_path)

    assert manager.get_all_sessions() == []
