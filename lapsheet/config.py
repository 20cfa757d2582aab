from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable

from dotenv import load_dotenv

from .errors import ConfigurationError


load_dotenv()

DEFAULT_TARGET_ACTIVITY_TYPE = "Pool Swim"

EnvGetter = Callable[[str], str | None]


def _bool_env(name: str, default: bool, *, getenv: EnvGetter = os.getenv) -> bool:
    value = getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _str_env(*names: str, default: str = "", getenv: EnvGetter = os.getenv) -> str:
    """Return the first non-blank value among ``names``; later names are older aliases."""
    for name in names:
        value = getenv(name)
        if value is not None and value.strip():
            return value.strip()
    return default


def _optional_str_env(*names: str, getenv: EnvGetter = os.getenv) -> str | None:
    return _str_env(*names, getenv=getenv) or None


def _seconds_env(name: str, default: int, minimum: int, maximum: int, *, getenv: EnvGetter = os.getenv) -> int:
    """Whole seconds, clamped into ``[minimum, maximum]``; unparseable values use ``default``."""
    try:
        parsed = int(_str_env(name, default=str(default), getenv=getenv))
    except ValueError:
        parsed = default
    return min(max(parsed, minimum), maximum)


@dataclass(frozen=True)
class Settings:
    garmin_email: str | None
    garmin_password: str | None
    target_activity_type: str

    service_account_key_base64: str | None
    spreadsheet_id: str | None

    log_level: str
    timezone: str
    headless: bool
    capture_timeout_seconds: int
    activity_list_timeout_seconds: int
    login_timeout_seconds: int
    http_timeout_seconds: int

    @classmethod
    def from_env(cls, *, getenv: EnvGetter = os.getenv) -> "Settings":
        """Read settings from the environment (and `.env`).

        Blank variables count as unset. The activity type reads
        `GARMIN_TARGET_ACTIVITY_TYPE_STRING` first and `TARGET_ACTIVITY_TYPE`
        second. Timeouts are whole seconds clamped to their allowed range.
        """
        target_activity_type = _str_env(
            "GARMIN_TARGET_ACTIVITY_TYPE_STRING",
            "TARGET_ACTIVITY_TYPE",
            default=DEFAULT_TARGET_ACTIVITY_TYPE,
            getenv=getenv,
        )
        return cls(
            garmin_email=_optional_str_env("GARMIN_EMAIL", getenv=getenv),
            garmin_password=_optional_str_env("GARMIN_PASSWORD", getenv=getenv),
            target_activity_type=target_activity_type,
            service_account_key_base64=_optional_str_env("SERVICE_ACCOUNT_KEY_BASE64", getenv=getenv),
            spreadsheet_id=_optional_str_env("GOOGLE_SHEET_ID", getenv=getenv),
            log_level=_str_env("LOG_LEVEL", default="INFO", getenv=getenv).upper(),
            timezone=_str_env("TZ", default="UTC", getenv=getenv),
            headless=_bool_env("BROWSER_HEADLESS", True, getenv=getenv),
            capture_timeout_seconds=_seconds_env("CAPTURE_TIMEOUT_SECONDS", 30, 5, 300, getenv=getenv),
            activity_list_timeout_seconds=_seconds_env("ACTIVITY_LIST_TIMEOUT_SECONDS", 30, 5, 300, getenv=getenv),
            login_timeout_seconds=_seconds_env("LOGIN_TIMEOUT_SECONDS", 60, 10, 600, getenv=getenv),
            http_timeout_seconds=_seconds_env("HTTP_TIMEOUT_SECONDS", 30, 5, 300, getenv=getenv),
        )

    def validate_credentials(self) -> None:
        missing = []
        if not self.garmin_email:
            missing.append("GARMIN_EMAIL")
        if not self.garmin_password:
            missing.append("GARMIN_PASSWORD")
        if missing:
            missing_str = ", ".join(missing)
            raise ConfigurationError(f"Missing required environment variables: {missing_str}")

    def validate_publishing(self) -> None:
        missing = []
        if not self.service_account_key_base64:
            missing.append("SERVICE_ACCOUNT_KEY_BASE64")
        if not self.spreadsheet_id:
            missing.append("GOOGLE_SHEET_ID")
        if missing:
            missing_str = ", ".join(missing)
            raise ConfigurationError(f"Missing spreadsheet settings: {missing_str}")
