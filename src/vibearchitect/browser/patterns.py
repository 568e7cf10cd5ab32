from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass


def compile_patterns(patterns: Iterable[str], *, ignore_case: bool = True) -> tuple[re.Pattern[str], ...]:
    flags = re.IGNORECASE if ignore_case else 0
    return tuple(re.compile(pattern, flags) for pattern in patterns)


def matches_any(patterns: Sequence[re.Pattern[str]], value: str) -> bool:
    return any(pattern.search(value) for pattern in patterns)


AUTH_COOKIE_PATTERNS = (
    *compile_patterns(
        [
            r"^sid$",
            r"session",
            r"^auth",
            r"token",
            r"^jwt",
            r"^access",
            r"^refresh",
            r"^id_token",
            r"^oauth",
            r"^oidc",
            r"^okta",
        ]
    ),
    # Okta device token, matched case-sensitively.
    re.compile(r"^DT$"),
    *compile_patterns([r"^idx$", r"^XSRF", r"^csrf", r"^__Host-", r"^__Secure-"]),
)

AUTH_LOCAL_STORAGE_PATTERNS = compile_patterns(
    [r"token", r"auth", r"session", r"user", r"^okta", r"^oidc"]
)

CACHE_COOKIE_PATTERNS = compile_patterns(
    [
        r"^_ga",
        r"^_gid",
        r"^_fbp",
        r"^_hjid",
        r"^intercom",
        r"^ajs",
        r"^amplitude",
        r"^mp_",
        r"^optimizely",
        r"^__utm",
        r"^_gcl",
        r"preference",
        r"^theme",
        r"^locale",
        r"collapsed",
        r"expanded",
        r"scroll",
        r"sidebar",
        r"modal",
    ]
)

CACHE_LOCAL_STORAGE_PATTERNS = compile_patterns(
    [
        r"^redux",
        r"^persist",
        r"^cache",
        r"^draft",
        r"^temp",
        r"history",
        r"^recent",
        r"^last",
        r"^ui\.",
        r"^state\.",
        r"preference",
        r"setting",
        r"collapsed",
        r"expanded",
        r"scroll",
        r"viewport",
        r"position",
        r"size",
    ]
)

SSO_DOMAIN_PATTERNS = compile_patterns(
    [
        r"\.okta\.com$",
        r"\.oktapreview\.com$",
        r"login\.microsoftonline\.com$",
        r"\.auth0\.com$",
        r"accounts\.google\.com$",
        r"\.onelogin\.com$",
        r"\.ping-eng\.com$",
    ]
)

LOGIN_PAGE_PATTERNS = compile_patterns(
    [
        r"\.okta\.com",
        r"\.oktapreview\.com",
        r"login\.microsoftonline\.com",
        r"accounts\.google\.com",
        r"\.auth0\.com",
        r"\.onelogin\.com",
        r"\.ping-eng\.com",
        r"\.pingidentity\.com",
        r"\.duosecurity\.com",
        r"sso\.",
        r"login\.",
        r"signin\.",
        r"auth\.",
        r"identity\.",
        r"/login/?$",
        r"/signin/?$",
        r"/authenticate",
        r"/oauth",
        r"/saml",
    ]
)

NOT_LOGIN_PAGE_PATTERNS = compile_patterns([r"/logout", r"/signout", r"/logged-out"])

OKTA_PATTERN = re.compile(r"\.okta\.com|\.oktapreview\.com", re.IGNORECASE)

# Checked in order; the first match names the provider.
SSO_PROVIDERS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"okta", re.IGNORECASE), "Okta"),
    (re.compile(r"microsoftonline|azure", re.IGNORECASE), "Microsoft/Azure AD"),
    (re.compile(r"accounts\.google\.com", re.IGNORECASE), "Google"),
    (re.compile(r"auth0", re.IGNORECASE), "Auth0"),
    (re.compile(r"onelogin", re.IGNORECASE), "OneLogin"),
    (re.compile(r"ping", re.IGNORECASE), "Ping Identity"),
    (re.compile(r"duo", re.IGNORECASE), "Duo Security"),
)

ERROR_PAGE_PATTERNS = compile_patterns(
    [
        r"ERR_CONNECTION_REFUSED",
        r"ERR_NAME_NOT_RESOLVED",
        r"ERR_INTERNET_DISCONNECTED",
        r"ERR_SSL_PROTOCOL_ERROR",
        r"ERR_CERT_",
        r"This site can't be reached",
        r"Page not found",
        r"404 Not Found",
        r"500 Internal Server Error",
        r"502 Bad Gateway",
        r"503 Service Unavailable",
        r"504 Gateway Timeout",
    ]
)

LOADING_SELECTORS: tuple[str, ...] = (
    ".loading",
    ".spinner",
    '[class*="loading"]',
    '[class*="spinner"]',
    ".MuiCircularProgress-root",
    ".ant-spin",
)


@dataclass(slots=True)
class SessionPatterns:
    """Cookie and localStorage classification tables used by session filtering."""

    auth_cookies: tuple[re.Pattern[str], ...] = AUTH_COOKIE_PATTERNS
    auth_local_storage: tuple[re.Pattern[str], ...] = AUTH_LOCAL_STORAGE_PATTERNS
    cache_cookies: tuple[re.Pattern[str], ...] = CACHE_COOKIE_PATTERNS
    cache_local_storage: tuple[re.Pattern[str], ...] = CACHE_LOCAL_STORAGE_PATTERNS
    sso_domains: tuple[re.Pattern[str], ...] = SSO_DOMAIN_PATTERNS

    def extended(
        self,
        *,
        auth_cookies: Iterable[str] = (),
        cache_cookies: Iterable[str] = (),
        sso_domains: Iterable[str] = (),
    ) -> SessionPatterns:
        return SessionPatterns(
            auth_cookies=self.auth_cookies + compile_patterns(auth_cookies),
            auth_local_storage=self.auth_local_storage,
            cache_cookies=self.cache_cookies + compile_patterns(cache_cookies),
            cache_local_storage=self.cache_local_storage,
            sso_domains=self.sso_domains + compile_patterns(sso_domains),
        )


@dataclass(slots=True)
class LoginPatterns:
    login: tuple[re.Pattern[str], ...] = LOGIN_PAGE_PATTERNS
    not_login: tuple[re.Pattern[str], ...] = NOT_LOGIN_PAGE_PATTERNS
    providers: tuple[tuple[re.Pattern[str], str], ...] = SSO_PROVIDERS

    def extended(self, login: Iterable[str] = (), not_login: Iterable[str] = ()) -> LoginPatterns:
        return LoginPatterns(
            login=self.login + compile_patterns(login),
            not_login=self.not_login + compile_patterns(not_login),
            providers=self.providers,
        )
