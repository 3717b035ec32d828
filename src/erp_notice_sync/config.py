from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

import yaml
from dateutil import tz
from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError
from .models import Credentials
from .util.dates import DEFAULT_PORTAL_TIMEZONE


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")

DEFAULT_LOGIN_URL = "https://erp.iitkgp.ac.in"


def _expand_env_vars(value: object) -> object:
    if isinstance(value, str):
        def repl(match: re.Match[str]) -> str:
            return os.getenv(match.group(1), "")

        return _ENV_VAR_PATTERN.sub(repl, value)
    if isinstance(value, list):
        return [_expand_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    return value


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name, "") or "").strip().lower()
    if not raw:
        return bool(default)
    return raw in {"1", "true", "t", "yes", "y", "on"}


def _deep_merge(base: object, override: object) -> object:
    if isinstance(base, dict) and isinstance(override, dict):
        out = dict(base)
        for k, v in override.items():
            if k in out:
                out[k] = _deep_merge(out[k], v)
            else:
                out[k] = v
        return out
    return override


def _parse_security_answers_env(value: str) -> dict[str, str]:
    s = (value or "").strip()
    if not s:
        return {}
    try:
        data = json.loads(s)
    except ValueError as e:
        raise ConfigurationError("ERP_SECURITY_ANSWERS must be a JSON object of question -> answer") from e
    if not isinstance(data, dict):
        raise ConfigurationError("ERP_SECURITY_ANSWERS must be a JSON object of question -> answer")
    return {str(k): str(v) for k, v in data.items()}


def _default_config_from_env() -> dict:
    """
    Env-only config so a `.env` file is enough; YAML is an optional override on top.
    """
    return {
        "portal": {
            "login_url": os.getenv("ERP_URL", DEFAULT_LOGIN_URL),
            "listing_url": os.getenv("NOTICES_URL", ""),
            "timezone": os.getenv("PORTAL_TIMEZONE", DEFAULT_PORTAL_TIMEZONE),
            "headless": _env_bool("HEADLESS", default=True),
            "debug_dir": os.getenv("DEBUG_DIR", "data/debug"),
        },
        "otp": {
            "base_url": os.getenv("OTP_API_URL", ""),
        },
        "delivery": {
            "url": os.getenv("NOTICE_WEBHOOK_URL", ""),
        },
        "credentials": {
            "roll_no": os.getenv("ERP_ROLL_NO", ""),
            "password": os.getenv("ERP_PASSWORD", ""),
            "security_answers": _parse_security_answers_env(os.getenv("ERP_SECURITY_ANSWERS", "")),
        },
        "state": {
            "db_path": os.getenv("STATE_DB_PATH", "data/state.db"),
        },
        "logging": {
            "level": os.getenv("LOG_LEVEL", "INFO"),
            "file_path": os.getenv("LOG_FILE", "data/sync.log"),
        },
    }


class PortalTimeouts(BaseModel):
    """Every portal wait is bounded; values are milliseconds."""

    browser_launch_ms: int = Field(default=30_000, gt=0)
    navigation_ms: int = Field(default=30_000, gt=0)
    login_redirect_ms: int = Field(default=15_000, gt=0)
    element_ms: int = Field(default=10_000, gt=0)
    listing_ms: int = Field(default=10_000, gt=0)
    detail_ms: int = Field(default=5_000, gt=0)
    # Pause after the OTP submit before checking for portal error banners.
    settle_ms: int = Field(default=3_000, ge=0)


class PortalConfig(BaseModel):
    login_url: str = DEFAULT_LOGIN_URL
    listing_url: str = ""
    timezone: str = DEFAULT_PORTAL_TIMEZONE
    headless: bool = True
    slow_mo_ms: int = 0
    debug_dir: str = "data/debug"
    timeouts: PortalTimeouts = PortalTimeouts()

    @field_validator("login_url", "listing_url")
    @classmethod
    def _strip_url(cls, value: str) -> str:
        return (value or "").strip()

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        value = (value or "").strip() or DEFAULT_PORTAL_TIMEZONE
        if tz.gettz(value) is None:
            raise ValueError(f"portal.timezone {value!r} is not a known timezone")
        return value


class OtpConfig(BaseModel):
    base_url: str = ""
    max_attempts: int = Field(default=5, ge=1)
    initial_delay_seconds: float = Field(default=2.0, ge=0)
    max_delay_seconds: float = Field(default=30.0, gt=0)
    request_timeout_seconds: float = Field(default=10.0, gt=0)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return (value or "").strip().rstrip("/")


class DeliveryConfig(BaseModel):
    url: str = ""
    timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("url")
    @classmethod
    def _strip_url(cls, value: str) -> str:
        return (value or "").strip()


class CredentialsConfig(BaseModel):
    roll_no: str = ""
    password: str = Field(default="", repr=False)
    security_answers: dict[str, str] = Field(default_factory=dict, repr=False)

    def is_set(self) -> bool:
        return bool(self.roll_no or self.password or self.security_answers)

    def to_credentials(self) -> Credentials:
        try:
            return Credentials(
                roll_no=self.roll_no,
                password=self.password,
                security_answers=self.security_answers,
            )
        except ValidationError as e:
            raise ConfigurationError(f"Invalid portal credentials: {e}") from e


class StateConfig(BaseModel):
    db_path: str = "data/state.db"


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_path: str = "data/sync.log"


class AppConfig(BaseModel):
    portal: PortalConfig = PortalConfig()
    otp: OtpConfig = OtpConfig()
    delivery: DeliveryConfig = DeliveryConfig()
    credentials: CredentialsConfig = CredentialsConfig()
    state: StateConfig = StateConfig()
    logging: LoggingConfig = LoggingConfig()

    def missing_endpoints(self) -> list[str]:
        """
        Names of required endpoint settings that are absent or not absolute http(s) URLs.
        """
        required = {
            "portal.listing_url": self.portal.listing_url,
            "delivery.url": self.delivery.url,
            "otp.base_url": self.otp.base_url,
        }
        missing: list[str] = []
        for name, value in required.items():
            parsed = urlparse(value or "")
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                missing.append(name)
        return missing

    def require_endpoints(self) -> None:
        missing = self.missing_endpoints()
        if missing:
            raise ConfigurationError(
                "Missing or invalid required URLs: "
                + ", ".join(missing)
                + " (set NOTICES_URL, NOTICE_WEBHOOK_URL, OTP_API_URL or the YAML equivalents)"
            )


def load_config(path: Optional[Union[str, Path]] = None) -> AppConfig:
    raw: dict = {}
    if path is not None:
        p = Path(path)
        if p.exists():
            try:
                raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Could not parse config file {p}: {e}") from e
            raw = _expand_env_vars(raw)  # supports ${ENV_VAR} in YAML

    merged = _deep_merge(_default_config_from_env(), raw)
    try:
        return AppConfig.model_validate(merged)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
