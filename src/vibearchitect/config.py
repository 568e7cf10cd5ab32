from __future__ import annotations

import json
import tomllib
from dataclasses import asdict, dataclass, field
from pathlib import Path

from vibearchitect.browser.automation import AutomationConfig
from vibearchitect.browser.page_load import RetryConfig, WaitStrategy
from vibearchitect.browser.patterns import LoginPatterns, SessionPatterns
from vibearchitect.browser.sessions import DEFAULT_SESSION_DIR
from vibearchitect.phases.complexity import AnalyzerConfig
from vibearchitect.phases.executor import ExecutorConfig
from vibearchitect.phases.generator import GeneratorConfig
from vibearchitect.phases.monitor import MonitorConfig
from vibearchitect.phases.state import StateManagerConfig

DEFAULT_CONFIG_FILE = "vibearch.toml"


@dataclass(slots=True)
class StateSection:
    auto_save: bool = True
    state_file_name: str = "phase-state.json"
    missions_dir: str = ".vibearch/missions"

    def manager_config(self) -> StateManagerConfig:
        return StateManagerConfig(auto_save=self.auto_save, state_file_name=self.state_file_name)


@dataclass(slots=True)
class BrowserSection:
    headless: bool = True
    artifacts_dir: str = ".vibearch/artifacts"
    recordings_dir: str = ".vibearch/recordings"
    navigation_timeout_ms: int = 30000
    wait_for_dom: bool = True
    wait_selectors: list[str] = field(default_factory=list)
    network_quiet_ms: int = 500
    wait_for_js_idle: bool = True
    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2.0
    retry_strategies: list[str] = field(
        default_factory=lambda: ["refresh", "hard-refresh", "clear-cache"]
    )
    screenshot_on_failure: bool = True
    auth_timeout_seconds: float = 300.0
    redirect_settle_seconds: float = 2.0
    redirect_timeout_seconds: float = 60.0
    extra_login_patterns: list[str] = field(default_factory=list)
    extra_not_login_patterns: list[str] = field(default_factory=list)

    def wait_strategy(self) -> WaitStrategy:
        return WaitStrategy(
            wait_for_dom=self.wait_for_dom,
            selectors=tuple(self.wait_selectors),
            network_quiet_ms=self.network_quiet_ms,
            wait_for_js_idle=self.wait_for_js_idle,
            timeout_ms=self.navigation_timeout_ms,
        )

    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_retries=self.max_retries,
            initial_delay_ms=self.initial_delay_ms,
            max_delay_ms=self.max_delay_ms,
            backoff_multiplier=self.backoff_multiplier,
            strategies=tuple(self.retry_strategies) or RetryConfig().strategies,
        )

    def login_patterns(self) -> LoginPatterns:
        return LoginPatterns().extended(self.extra_login_patterns, self.extra_not_login_patterns)


@dataclass(slots=True)
class SessionsSection:
    session_dir: str = ""
    filter_auth_only: bool = True
    extra_auth_cookies: list[str] = field(default_factory=list)
    extra_cache_cookies: list[str] = field(default_factory=list)
    extra_sso_domains: list[str] = field(default_factory=list)

    def resolved_dir(self) -> Path:
        return Path(self.session_dir).expanduser() if self.session_dir else DEFAULT_SESSION_DIR

    def patterns(self) -> SessionPatterns:
        return SessionPatterns().extended(
            auth_cookies=self.extra_auth_cookies,
            cache_cookies=self.extra_cache_cookies,
            sso_domains=self.extra_sso_domains,
        )


@dataclass(slots=True)
class LoggingSection:
    level: str = "WARNING"


@dataclass(slots=True)
class VibeConfig:
    analyzer: AnalyzerConfig = field(default_factory=AnalyzerConfig)
    generator: GeneratorConfig = field(default_factory=GeneratorConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    state: StateSection = field(default_factory=StateSection)
    browser: BrowserSection = field(default_factory=BrowserSection)
    sessions: SessionsSection = field(default_factory=SessionsSection)
    logging: LoggingSection = field(default_factory=LoggingSection)

    @classmethod
    def default(cls) -> VibeConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> VibeConfig:
        return cls(
            analyzer=AnalyzerConfig(**data.get("analyzer", {})),
            generator=GeneratorConfig(**data.get("generator", {})),
            monitor=MonitorConfig(**data.get("monitor", {})),
            executor=ExecutorConfig(**data.get("executor", {})),
            state=StateSection(**data.get("state", {})),
            browser=BrowserSection(**data.get("browser", {})),
            sessions=SessionsSection(**data.get("sessions", {})),
            logging=LoggingSection(**data.get("logging", {})),
        )

    def to_dict(self) -> dict:
        return {
            "analyzer": asdict(self.analyzer),
            "generator": asdict(self.generator),
            "monitor": asdict(self.monitor),
            "executor": asdict(self.executor),
            "state": asdict(self.state),
            "browser": asdict(self.browser),
            "sessions": asdict(self.sessions),
            "logging": asdict(self.logging),
        }

    def missions_dir(self, root: Path) -> Path:
        return root / self.state.missions_dir

    def automation_config(self, root: Path) -> AutomationConfig:
        return AutomationConfig(
            headless=self.browser.headless,
            artifacts_dir=root / self.browser.artifacts_dir,
            recordings_dir=root / self.browser.recordings_dir,
            wait=self.browser.wait_strategy(),
            retry=self.browser.retry_config(),
            screenshot_on_failure=self.browser.screenshot_on_failure,
            redirect_settle_seconds=self.browser.redirect_settle_seconds,
            redirect_timeout_seconds=self.browser.redirect_timeout_seconds,
            filter_auth_only=self.sessions.filter_auth_only,
        )


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        if not rendered:
            return "0.0"
        return rendered if "." in rendered else f"{rendered}.0"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: VibeConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    section_order = [
        "analyzer",
        "generator",
        "monitor",
        "executor",
        "state",
        "browser",
        "sessions",
        "logging",
    ]
    for section in section_order:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> VibeConfig:
    if not path.exists():
        return VibeConfig.default()
    return VibeConfig.from_dict(tomllib.loads(path.read_text(encoding="utf-8")))


def save_config(path: Path, config: VibeConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
