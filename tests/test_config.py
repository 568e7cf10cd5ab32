import tomllib
from pathlib import Path

from vibearchitect import __version__
from vibearchitect.config import VibeConfig, dumps_toml, load_config, save_config


def test_config_roundtrip(tmp_path: Path) -> None:
    config_path = tmp_path / "vibearch.toml"
    config = VibeConfig.default()
    config.analyzer.tokens_per_phase = 20000
    config.generator.preferred_strategy = "incremental"
    config.generator.max_features_per_phase = 3
    config.monitor.total_budget = 12000
    config.monitor.warning_threshold = 65.5
    config.executor.auto_approve = True
    config.state.missions_dir = "missions"
    config.browser.headless = False
    config.browser.retry_strategies = ["refresh", "wait-longer"]
    config.browser.backoff_multiplier = 1.5
    config.browser.extra_login_patterns = [r"/sso/start"]
    config.sessions.session_dir = str(tmp_path / "sessions")
    config.sessions.extra_auth_cookies = ["^corp_"]
    config.logging.level = "DEBUG"

    save_config(config_path, config)
    loaded = load_config(config_path)

    assert loaded.analyzer.tokens_per_phase == 20000
    assert loaded.analyzer.medium_threshold == 40
    assert loaded.generator.preferred_strategy == "incremental"
    assert loaded.generator.max_features_per_phase == 3
    assert loaded.monitor.total_budget == 12000
    assert loaded.monitor.warning_threshold == 65.5
    assert loaded.executor.auto_approve is True
    assert loaded.state.missions_dir == "missions"
    assert loaded.browser.headless is False
    assert loaded.browser.retry_strategies == ["refresh", "wait-longer"]
    assert loaded.browser.backoff_multiplier == 1.5
    assert loaded.browser.auth_timeout_seconds == 300.0
    assert loaded.browser.extra_login_patterns == [r"/sso/start"]
    assert loaded.sessions.resolved_dir() == tmp_path / "sessions"
    assert loaded.sessions.extra_auth_cookies == ["^corp_"]
    assert loaded.logging.level == "DEBUG"


def test_missing_config_file_yields_defaults(tmp_path: Path) -> None:
    loaded = load_config(tmp_path / "absent.toml")

    assert loaded == VibeConfig.default()


def test_toml_dump_contains_sections_and_floats() -> None:
    rendered = dumps_toml(VibeConfig.default())

    for section in ("analyzer", "generator", "monitor", "executor", "state", "browser", "sessions", "logging"):
        assert f"[{section}]" in rendered
    assert "backoff_multiplier = 2.0" in rendered
    assert "wait_selectors = []" in rendered
    assert 'retry_strategies = ["refresh", "hard-refresh", "clear-cache"]' in rendered
    assert tomllib.loads(rendered)["executor"]["phased_execution_threshold"] == 40


def test_browser_section_builds_runtime_settings(tmp_path: Path) -> None:
    config = VibeConfig.default()
    config.browser.wait_selectors = ["#app"]
    config.browser.retry_strategies = []
    config.browser.extra_not_login_patterns = [r"/goodbye"]

    automation = config.automation_config(tmp_path)
    patterns = config.browser.login_patterns()

    assert automation.artifacts_dir == tmp_path / ".vibearch" / "artifacts"
    assert automation.wait.selectors == ("#app",)
    assert automation.retry.strategies == ("refresh", "hard-refresh", "clear-cache")
    assert any(pattern.search("https://app.example.com/goodbye") for pattern in patterns.not_login)
    assert config.missions_dir(tmp_path) == tmp_path / ".vibearch" / "missions"


def test_package_version_constant_matches_pyproject() -> None:
    project_root = Path(__file__).resolve().parents[1]
    pyproject = tomllib.loads((project_root / "pyproject.toml").read_text(encoding="utf-8"))

    assert __version__ == pyproject["project"]["version"]
