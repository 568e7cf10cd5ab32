from vibearchitect.browser.auth import AuthSessionManager, console_auth_prompt
from vibearchitect.browser.automation import (
    AutomationConfig,
    BrowserAutomationService,
    NavigationOutcome,
    RecordingResult,
    ScreenshotResult,
)
from vibearchitect.browser.driver import (
    BrowserDriver,
    BrowserDriverError,
    Cookie,
    NavigationResponse,
    StorageOrigin,
    StorageState,
)
from vibearchitect.browser.page_load import (
    NavigationOptions,
    PageLoadResult,
    PageLoadValidator,
    RetryConfig,
    ValidationResult,
    WaitStrategy,
)
from vibearchitect.browser.patterns import LoginPatterns, SessionPatterns
from vibearchitect.browser.playwright_driver import PlaywrightDriver
from vibearchitect.browser.sessions import (
    SavedSession,
    SessionFilterConfig,
    SessionHealth,
    SessionStorageManager,
)

__all__ = [
    "AuthSessionManager",
    "AutomationConfig",
    "BrowserAutomationService",
    "BrowserDriver",
    "BrowserDriverError",
    "Cookie",
    "LoginPatterns",
    "NavigationOptions",
    "NavigationOutcome",
    "NavigationResponse",
    "PageLoadResult",
    "PageLoadValidator",
    "PlaywrightDriver",
    "RecordingResult",
    "RetryConfig",
    "SavedSession",
    "ScreenshotResult",
    "SessionFilterConfig",
    "SessionHealth",
    "SessionPatterns",
    "SessionStorageManager",
    "StorageOrigin",
    "StorageState",
    "ValidationResult",
    "WaitStrategy",
    "console_auth_prompt",
]
