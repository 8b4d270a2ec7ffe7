import os
import sys
from dataclasses import dataclass, field
from typing import Any

CASE_TIMEOUT_MS = 60000
DEFAULT_USER_AGENT = "QA-Step-Runner/1.0 Playwright Agent"
BROWSER_TYPES = ("chromium", "firefox")


def _pick(section: dict, *keys, default=None):
    for key in keys:
        if key in section and section[key] is not None:
            return section[key]
    return default


def _truthy(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def force_headless() -> bool:
    """True where a headful browser cannot start (no X server, or explicitly forced)."""
    if _truthy(os.environ.get("FORCE_HEADLESS", "")):
        return True
    return sys.platform.startswith("linux") and not os.environ.get("DISPLAY")


@dataclass
class AuthConfig:
    login_url: str
    username: str = ""
    password: str = ""
    totp_secret: str = ""

    @classmethod
    def from_dict(cls, auth: dict) -> "AuthConfig | None":
        if not _truthy(auth.get("enabled", False)):
            return None
        login_url = _pick(auth, "loginUrl", "login_url", default="")
        if not login_url:
            return None
        credentials = auth.get("credentials") or {}
        username_env = auth.get("username_env", "LOGIN_USERNAME")
        password_env = auth.get("password_env", "LOGIN_PASSWORD")
        totp_env = auth.get("totp_env", "TOTP_SECRET")
        return cls(
            login_url=login_url,
            username=_pick(auth, "username", default=None) or credentials.get("username") or os.environ.get(username_env, ""),
            password=_pick(auth, "password", default=None) or credentials.get("password") or os.environ.get(password_env, ""),
            totp_secret=_pick(auth, "totp_secret", "totpSecret", default=None) or os.environ.get(totp_env, ""),
        )


@dataclass
class RunConfig:
    browser_type: str = "chromium"
    headless: bool = True
    viewport: dict = field(default_factory=lambda: {"width": 1920, "height": 1080})
    user_agent: str = DEFAULT_USER_AGENT
    auth: AuthConfig | None = None
    capture_screenshots: bool = False
    capture_network: bool = False
    case_timeout_ms: int = CASE_TIMEOUT_MS
    stop_words: dict[str, list[str]] = field(default_factory=dict)
    repair_enabled: bool = False
    model_id: str | None = None
    region: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, config: dict | None) -> "RunConfig":
        config = config or {}
        browser = config.get("browser") or {}
        evidence = config.get("evidence") or {}
        execution = config.get("execution") or {}
        resolution = config.get("resolution") or {}
        repair = config.get("repair") or {}

        browser_type = str(browser.get("type", "chromium")).lower()
        if browser_type not in BROWSER_TYPES:
            browser_type = "chromium"

        return cls(
            browser_type=browser_type,
            headless=_truthy(browser.get("headless", True)),
            viewport=browser.get("viewport") or {"width": 1920, "height": 1080},
            user_agent=_pick(browser, "user_agent", "userAgent", default=DEFAULT_USER_AGENT),
            auth=AuthConfig.from_dict(config.get("authentication") or {}),
            capture_screenshots=_truthy(evidence.get("capture_screenshots", False)),
            capture_network=_truthy(evidence.get("capture_network", False)),
            case_timeout_ms=int(_pick(execution, "case_timeout_ms", "caseTimeoutMs", default=CASE_TIMEOUT_MS)),
            stop_words=resolution.get("stop_words") or {},
            repair_enabled=_truthy(repair.get("enabled", False)),
            model_id=_pick(repair, "model_id", "modelId"),
            region=repair.get("region"),
            raw=config,
        )

    @property
    def effective_headless(self) -> bool:
        return self.headless or force_headless()

    @property
    def repair_ready(self) -> bool:
        return self.repair_enabled and bool(self.model_id) and bool(self.region)
