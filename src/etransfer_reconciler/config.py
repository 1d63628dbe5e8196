"""Configuration via environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

DEFAULT_CONFIDENCE_THRESHOLD = 90
DEFAULT_SENDER_ALLOWLIST = ("interac.ca",)

POLL_INTERVAL_SECONDS = 15.0
POLL_INITIAL_DELAY_SECONDS = 5.0
POLL_WINDOW_SIZE = 5
FUZZY_CANDIDATE_LIMIT = 15
STOREFRONT_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class ImapConfig:
    """IMAP connection configuration."""

    host: str
    username: str
    password: str
    port: int = 993
    folder: str = "INBOX"
    secure: bool = True
    timeout: float = 30.0
    poll_interval: float = 30.0
    sender_allowlist: tuple[str, ...] = DEFAULT_SENDER_ALLOWLIST


@dataclass(frozen=True)
class ReconnectPolicy:
    """Exponential backoff settings for mailbox reconnection."""

    base_delay_ms: int = 5000
    max_delay_ms: int = 60000
    max_attempts: int = 10


@dataclass(frozen=True)
class StorefrontConfig:
    """Credentials for the storefront order API."""

    api_url: str
    consumer_key: str
    consumer_secret: str
    timeout: float = STOREFRONT_TIMEOUT_SECONDS


@dataclass(frozen=True)
class SmtpConfig:
    """Outbound SMTP configuration for order notifications."""

    host: str
    from_addr: str
    port: int = 587
    username: str | None = None
    password: str | None = None
    starttls: bool = True


def _get_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _get_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _require(*names: str) -> dict[str, str]:
    """Return the named variables, raising if any are unset or empty."""
    values = {name: os.environ.get(name, "") for name in names}
    missing = [name for name, value in values.items() if not value]
    if missing:
        msg = f"Required environment variables not set: {', '.join(missing)}"
        raise ValueError(msg)
    return values


def get_database_url() -> str:
    """Return the DATABASE_URL from the environment."""
    url = os.environ.get("DATABASE_URL")
    if not url:
        msg = "DATABASE_URL environment variable is required"
        raise ValueError(msg)
    return url


def imap_configured() -> bool:
    """Return True when the required IMAP credentials are present."""
    return all(
        os.environ.get(name) for name in ("IMAP_HOST", "IMAP_USERNAME", "IMAP_PASSWORD")
    )


def get_imap_config() -> ImapConfig:
    """Build IMAP configuration from environment variables.

    Required: IMAP_HOST, IMAP_USERNAME, IMAP_PASSWORD
    Optional: IMAP_PORT (default 993), IMAP_FOLDER (default INBOX),
    IMAP_SECURE (default true), IMAP_TIMEOUT_SECONDS (default 30),
    IMAP_POLL_SECONDS (default 30), IMAP_SENDER_ALLOWLIST (comma
    separated, default interac.ca)
    """
    required = _require("IMAP_HOST", "IMAP_USERNAME", "IMAP_PASSWORD")

    allowlist_raw = os.environ.get("IMAP_SENDER_ALLOWLIST", "")
    allowlist = tuple(
        pattern.strip().lower() for pattern in allowlist_raw.split(",") if pattern.strip()
    )

    return ImapConfig(
        host=required["IMAP_HOST"],
        username=required["IMAP_USERNAME"],
        password=required["IMAP_PASSWORD"],
        port=_get_int("IMAP_PORT", 993),
        folder=os.environ.get("IMAP_FOLDER", "INBOX"),
        secure=_get_bool("IMAP_SECURE", True),
        timeout=_get_float("IMAP_TIMEOUT_SECONDS", 30.0),
        poll_interval=_get_float("IMAP_POLL_SECONDS", 30.0),
        sender_allowlist=allowlist or DEFAULT_SENDER_ALLOWLIST,
    )


def get_reconnect_policy() -> ReconnectPolicy:
    """Build the mailbox reconnect policy from environment variables."""
    return ReconnectPolicy(
        base_delay_ms=_get_int("IMAP_RECONNECT_BASE_DELAY_MS", 5000),
        max_delay_ms=_get_int("IMAP_RECONNECT_MAX_DELAY_MS", 60000),
        max_attempts=_get_int("IMAP_RECONNECT_MAX_ATTEMPTS", 10),
    )


def get_confidence_threshold() -> int:
    """Return the auto-confirm confidence threshold.

    Reads IMAP_CONFIDENCE_THRESHOLD; anything that is not an integer
    between 0 and 100 falls back to the default of 90.
    """
    raw = os.environ.get("IMAP_CONFIDENCE_THRESHOLD", "").strip()
    if not raw:
        return DEFAULT_CONFIDENCE_THRESHOLD
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_CONFIDENCE_THRESHOLD
    if 0 <= value <= 100:
        return value
    return DEFAULT_CONFIDENCE_THRESHOLD


def get_storefront_config() -> StorefrontConfig | None:
    """Return storefront API credentials, or None when not configured."""
    api_url = os.environ.get("STOREFRONT_API_URL")
    key = os.environ.get("STOREFRONT_CONSUMER_KEY")
    secret = os.environ.get("STOREFRONT_CONSUMER_SECRET")
    if not (api_url and key and secret):
        return None
    return StorefrontConfig(
        api_url=api_url.rstrip("/"),
        consumer_key=key,
        consumer_secret=secret,
    )


def get_smtp_config() -> SmtpConfig:
    """Build SMTP configuration from environment variables.

    Required: SMTP_HOST
    Optional: SMTP_PORT (default 587), SMTP_USERNAME, SMTP_PASSWORD,
    EMAIL_FROM (default noreply@example.com), SMTP_STARTTLS (default true)
    """
    required = _require("SMTP_HOST")
    return SmtpConfig(
        host=required["SMTP_HOST"],
        from_addr=os.environ.get("EMAIL_FROM", "noreply@example.com"),
        port=_get_int("SMTP_PORT", 587),
        username=os.environ.get("SMTP_USERNAME") or None,
        password=os.environ.get("SMTP_PASSWORD") or None,
        starttls=_get_bool("SMTP_STARTTLS", True),
    )
