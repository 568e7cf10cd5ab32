from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vibearchitect.browser.driver import BrowserDriver, Cookie, StorageOrigin, StorageState
from vibearchitect.browser.patterns import SessionPatterns, matches_any

logger = logging.getLogger(__name__)

DEFAULT_SESSION_DIR = Path.home() / ".vibearchitect" / "sessions"
INDEX_FILE_NAME = "index.json"

_SLUG_PATTERN = re.compile(r"[^a-z0-9]", re.IGNORECASE)
_OKTA_NAME = re.compile(r"okta", re.IGNORECASE)
_SESSION_NAME = re.compile(r"session|sid", re.IGNORECASE)


@dataclass(slots=True)
class SavedSession:
    id: str
    name: str
    domain: str
    saved_at: float
    expires_at: float | None = None
    cookie_count: int = 0
    local_storage_keys: list[str] = field(default_factory=list)

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "domain": self.domain,
            "saved_at": self.saved_at,
            "expires_at": self.expires_at,
            "cookie_count": self.cookie_count,
            "local_storage_keys": list(self.local_storage_keys),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SavedSession:
        expires_at = data.get("expires_at")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "")),
            domain=str(data.get("domain", "")),
            saved_at=float(data.get("saved_at", 0)),
            expires_at=float(expires_at) if expires_at is not None else None,
            cookie_count=int(data.get("cookie_count", 0)),
            local_storage_keys=[str(item) for item in data.get("local_storage_keys", [])],
        )


@dataclass(slots=True)
class SessionFilterConfig:
    """Regex filters applied in order: domains, cookie names, localStorage keys."""

    include_domains: tuple[re.Pattern[str], ...] | None = None
    exclude_domains: tuple[re.Pattern[str], ...] | None = None
    include_cookies: tuple[re.Pattern[str], ...] | None = None
    exclude_cookies: tuple[re.Pattern[str], ...] | None = None
    include_local_storage: tuple[re.Pattern[str], ...] | None = None
    exclude_local_storage: tuple[re.Pattern[str], ...] | None = None


@dataclass(slots=True)
class SessionHealth:
    is_valid: bool
    expired_cookies: int
    valid_cookies: int
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "expired_cookies": self.expired_cookies,
            "valid_cookies": self.valid_cookies,
            "recommendations": list(self.recommendations),
        }


def _domains_overlap(stored: str, query: str) -> bool:
    return stored == query or stored in query or query in stored


class SessionStorageManager:
    """Stores filtered browser sessions as JSON files plus an ``index.json``."""

    def __init__(
        self,
        session_dir: Path = DEFAULT_SESSION_DIR,
        *,
        patterns: SessionPatterns | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.session_dir = Path(session_dir)
        self.patterns = patterns or SessionPatterns()
        self._clock = clock
        self._sessions: dict[str, SavedSession] = {}
        self._load_index()

    @property
    def index_path(self) -> Path:
        return self.session_dir / INDEX_FILE_NAME

    def session_path(self, session_id: str) -> Path:
        return self.session_dir / f"{session_id}.json"

    def is_auth_cookie(self, cookie: Cookie) -> bool:
        if matches_any(self.patterns.sso_domains, cookie.domain):
            return True
        if matches_any(self.patterns.auth_cookies, cookie.name):
            return True
        if matches_any(self.patterns.cache_cookies, cookie.name):
            return False
        return cookie.http_only and cookie.secure

    def is_auth_local_storage(self, key: str) -> bool:
        if matches_any(self.patterns.cache_local_storage, key):
            return False
        return matches_any(self.patterns.auth_local_storage, key)

    def filter_auth_only(self, state: StorageState) -> StorageState:
        cookies = [cookie for cookie in state.cookies if self.is_auth_cookie(cookie)]
        origins = [
            StorageOrigin(
                origin=origin.origin,
                local_storage=[
                    (name, value)
                    for name, value in origin.local_storage
                    if self.is_auth_local_storage(name)
                ],
            )
            for origin in state.origins
        ]
        origins = [origin for origin in origins if origin.local_storage]
        logger.debug(
            "Filtered cookies %d -> %d, origins %d -> %d",
            len(state.cookies),
            len(cookies),
            len(state.origins),
            len(origins),
        )
        return StorageState(cookies=cookies, origins=origins)

    def filter_with_config(self, state: StorageState, config: SessionFilterConfig) -> StorageState:
        cookies = list(state.cookies)
        if config.include_domains is not None:
            cookies = [c for c in cookies if matches_any(config.include_domains, c.domain)]
        if config.exclude_domains is not None:
            cookies = [c for c in cookies if not matches_any(config.exclude_domains, c.domain)]
        if config.include_cookies is not None:
            cookies = [c for c in cookies if matches_any(config.include_cookies, c.name)]
        if config.exclude_cookies is not None:
            cookies = [c for c in cookies if not matches_any(config.exclude_cookies, c.name)]

        origins: list[StorageOrigin] = []
        for origin in state.origins:
            entries = list(origin.local_storage)
            if config.include_local_storage is not None:
                entries = [e for e in entries if matches_any(config.include_local_storage, e[0])]
            if config.exclude_local_storage is not None:
                entries = [
                    e for e in entries if not matches_any(config.exclude_local_storage, e[0])
                ]
            if entries:
                origins.append(StorageOrigin(origin=origin.origin, local_storage=entries))
        return StorageState(cookies=cookies, origins=origins)

    def save_session(
        self,
        state: StorageState,
        name: str,
        domain: str,
        *,
        filter_auth_only: bool = True,
    ) -> SavedSession | None:
        to_save = self.filter_auth_only(state) if filter_auth_only else state
        now = self._clock()
        session_id = f"{_SLUG_PATTERN.sub('_', domain)}_{int(now * 1000)}_{uuid.uuid4().hex[:8]}"
        expiring = [cookie.expires for cookie in to_save.cookies if cookie.expires > 0]

        if not self._write_json(self.session_path(session_id), to_save.to_dict()):
            return None

        session = SavedSession(
            id=session_id,
            name=name,
            domain=domain,
            saved_at=now,
            expires_at=min(expiring) if expiring else None,
            cookie_count=len(to_save.cookies),
            local_storage_keys=[key for origin in to_save.origins for key, _ in origin.local_storage],
        )
        self._sessions[session_id] = session
        self._save_index()
        logger.info("Saved session %s for %s (%d cookies)", name, domain, session.cookie_count)
        return session

    def load_session(self, session_id: str) -> StorageState | None:
        path = self.session_path(session_id)
        if not path.exists():
            logger.warning("Session file not found: %s", session_id)
            return None
        try:
            state = StorageState.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Failed to load session %s: %s", session_id, exc)
            return None
        logger.debug("Loaded session %s (%d cookies)", session_id, len(state.cookies))
        return state

    def get_session(self, session_id: str) -> SavedSession | None:
        return self._sessions.get(session_id)

    def get_session_for_domain(self, domain: str) -> SavedSession | None:
        now = self._clock()
        matches = [
            session
            for session in self._sessions.values()
            if _domains_overlap(session.domain, domain) and not session.is_expired(now)
        ]
        if not matches:
            return None
        return max(matches, key=lambda session: session.saved_at)

    def get_all_sessions(self) -> list[SavedSession]:
        return sorted(self._sessions.values(), key=lambda session: session.saved_at, reverse=True)

    def delete_session(self, session_id: str) -> bool:
        try:
            self.session_path(session_id).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Failed to delete session %s: %s", session_id, exc)
            return False
        self._sessions.pop(session_id, None)
        self._save_index()
        return True

    def delete_sessions_for_domain(self, domain: str) -> int:
        doomed = [
            session.id
            for session in self._sessions.values()
            if session.domain == domain or session.domain in domain
        ]
        for session_id in doomed:
            self.delete_session(session_id)
        return len(doomed)

    def clear_expired_sessions(self) -> int:
        now = self._clock()
        expired = [session.id for session in self._sessions.values() if session.is_expired(now)]
        for session_id in expired:
            self.delete_session(session_id)
        return len(expired)

    def is_session_valid(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None or session.is_expired(self._clock()):
            return False
        return self.session_path(session_id).exists()

    def analyze_session_health(self, session_id: str) -> SessionHealth:
        state = self.load_session(session_id)
        if state is None:
            return SessionHealth(
                is_valid=False,
                expired_cookies=0,
                valid_cookies=0,
                recommendations=["Session file not found. Please log in again."],
            )

        now = self._clock()
        expired = [c for c in state.cookies if 0 < c.expires < now]
        valid = [c for c in state.cookies if c.expires <= 0 or c.expires >= now]
        recommendations: list[str] = []
        if expired:
            recommendations.append(
                f"{len(expired)} cookies have expired. Re-authenticate recommended."
            )
        if not valid:
            recommendations.append("No valid cookies found. Please log in again.")
        has_auth_cookie = any(
            _OKTA_NAME.search(c.name) or _SESSION_NAME.search(c.name) for c in state.cookies
        )
        if not has_auth_cookie:
            recommendations.append("No session/auth cookies found. Authentication may have failed.")
        return SessionHealth(
            is_valid=bool(valid) and not expired,
            expired_cookies=len(expired),
            valid_cookies=len(valid),
            recommendations=recommendations,
        )

    async def apply_session(self, driver: BrowserDriver, session_id: str) -> bool:
        state = self.load_session(session_id)
        if state is None:
            return False
        await driver.add_cookies(state.cookies)
        logger.info("Restored %d cookies from session %s", len(state.cookies), session_id)
        return True

    def _load_index(self) -> None:
        path = self.index_path
        if not path.exists():
            return
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            sessions = [SavedSession.from_dict(item) for item in payload]
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Failed to load session index %s: %s", path, exc)
            return
        self._sessions = {session.id: session for session in sessions}

    def _save_index(self) -> bool:
        return self._write_json(
            self.index_path, [session.to_dict() for session in self._sessions.values()]
        )

    def _write_json(self, path: Path, payload: Any) -> bool:
        try:
            self.session_dir.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.session_dir,
                prefix=".session-",
                suffix=".tmp",
                delete=False,
            ) as handle:
                handle.write(json.dumps(payload, ensure_ascii=False, indent=2))
                temp_path = handle.name
            os.replace(temp_path, path)
        except OSError as exc:
            logger.warning("Failed to write %s: %s", path, exc)
            return False
        return True
