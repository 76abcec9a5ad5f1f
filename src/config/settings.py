"""
Configuration settings for the venue adapter layer.

**Conceptual**: This module provides strongly-typed configuration objects that
load from environment variables (via .env files). All settings are validated
at construction, so a missing API key or a malformed number fails at startup
with a clear message instead of as a 401 halfway through a session.

Three kinds of configuration live here:
  - VenueConfig: credentials and endpoint for one venue. Immutable; replacing
    it means calling configure() on the adapter again.
  - StreamSettings: reconnection policy and socket timeouts.
  - RestSettings: HTTP timeout.

**Security note**: credentials should come from the environment or a .env
file that is never committed. The repr of VenueConfig hides secrets.

This module uses python-dotenv to load .env files and dataclasses for type safety.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from src.venues.profiles import get_profile, resolve_preset, rest_base_url

# Load .env from project root (no-op when the file is absent)
load_dotenv(dotenv_path=Path(__file__).parent.parent.parent / ".env")

_TRUE_STRINGS = ("true", "1", "yes")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_STRINGS


def _env_optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got: {raw}")


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default).strip()
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw}")


@dataclass(frozen=True)
class VenueConfig:
    """
    Credentials and connection parameters for one venue.

    **Conceptual**: A VenueConfig is created by the caller (usually from user
    entered credentials or environment variables), handed to an adapter's
    configure(), and held for the adapter's lifetime. It never changes after
    construction; to switch accounts, build a new config and configure again.

    **Credential styles**:
      - Key venues (alpaca, bybit, kucoin, ...): api_key, usually secret_key,
        kucoin additionally passphrase.
      - Session venues (rithmic): username/password plus the gateway login
        fields system_name, app_name, app_version and gateway.

    Attributes:
        venue: Venue identifier from the profile registry (e.g., "alpaca").
        api_key: API key (required for key venues).
        secret_key: API secret.
        passphrase: API passphrase (KuCoin).
        username / password: Session login credentials (futures gateways).
        base_url: REST base URL. Empty means "use the profile's URL for the
                  sandbox flag"; stream-only venues leave it empty.
        sandbox: True for paper/testnet endpoints.
        account_id: Optional account identifier (futures order routing).
        leverage: Default leverage for derivatives orders.
        margin_mode: Default margin mode ("isolated" or "cross").
        system_name / app_name / app_version / gateway: Futures gateway login.
    """
    venue: str
    api_key: str = ""
    secret_key: str = field(default="", repr=False)
    passphrase: str = field(default="", repr=False)
    username: str = ""
    password: str = field(default="", repr=False)
    base_url: str = ""
    sandbox: bool = False
    account_id: str = ""
    leverage: Optional[float] = None
    margin_mode: Optional[str] = None
    system_name: str = ""
    app_name: str = "multivenue"
    app_version: str = "1.0"
    gateway: str = ""

    def __post_init__(self):
        """Validate settings after initialization."""
        if not self.venue or not self.venue.strip():
            raise ValueError("VenueConfig.venue is required")

        venue = self.venue.strip().lower()
        object.__setattr__(self, "venue", venue)
        profile = get_profile(venue)

        if profile.session_auth:
            if not self.username or not self.password:
                raise ValueError(
                    f"{venue} uses session login: username and password are required"
                )
        elif not self.api_key:
            raise ValueError(
                f"{venue} requires an api_key. "
                "Please set it in your .env file or environment variables."
            )

        if not self.base_url:
            object.__setattr__(self, "base_url", rest_base_url(venue, self.sandbox) or "")

        if self.margin_mode is not None:
            mode = self.margin_mode.strip().lower()
            if mode not in ("isolated", "cross"):
                raise ValueError(f"margin_mode must be 'isolated' or 'cross', got: {self.margin_mode}")
            object.__setattr__(self, "margin_mode", mode)

        if self.leverage is not None and self.leverage <= 0:
            raise ValueError(f"leverage must be positive, got: {self.leverage}")

    @property
    def family(self) -> str:
        """Venue family from the profile registry (equities, crypto, futures)."""
        return get_profile(self.venue).family

    def with_updates(self, **changes) -> "VenueConfig":
        """
        Return a copy with `changes` applied (the original is untouched).

        A base_url that came from the profile is derived again for the new
        venue/sandbox combination; an explicit one is kept unless `changes`
        replaces it.
        """
        if "base_url" not in changes and self.base_url == (rest_base_url(self.venue, self.sandbox) or ""):
            changes["base_url"] = ""
        return replace(self, **changes)

    @classmethod
    def from_preset(cls, preset: str, **credentials) -> "VenueConfig":
        """
        Build a config from a named preset plus credentials.

        Example:
            >>> cfg = VenueConfig.from_preset("bybit_testnet", api_key="k", secret_key="s")
            >>> cfg.venue, cfg.sandbox, cfg.base_url
            ('bybit', True, 'https://api-testnet.bybit.com')
        """
        profile, sandbox = resolve_preset(preset)
        credentials.setdefault("sandbox", sandbox)
        return cls(venue=profile.name, **credentials)

    @classmethod
    def from_env(cls, prefix: str, venue: Optional[str] = None) -> "VenueConfig":
        """
        Load a venue config from environment variables.

        **Environment variables** (with prefix "ALPACA"):
          - ALPACA_VENUE (optional): venue id; defaults to `venue` or the
            lowercased prefix.
          - ALPACA_API_KEY, ALPACA_SECRET_KEY, ALPACA_PASSPHRASE
          - ALPACA_USERNAME, ALPACA_PASSWORD (session venues)
          - ALPACA_BASE_URL (optional): overrides the profile URL.
          - ALPACA_SANDBOX (optional): "true"/"false", default "true".
          - ALPACA_ACCOUNT_ID, ALPACA_LEVERAGE, ALPACA_MARGIN_MODE
          - ALPACA_SYSTEM_NAME, ALPACA_APP_NAME, ALPACA_APP_VERSION, ALPACA_GATEWAY

        Raises:
            ValueError: If required credentials are missing or values are malformed.
        """
        p = prefix.strip().upper()
        venue_id = os.getenv(f"{p}_VENUE") or venue or p.lower()
        margin_mode = os.getenv(f"{p}_MARGIN_MODE") or None

        return cls(
            venue=venue_id,
            api_key=os.getenv(f"{p}_API_KEY", ""),
            secret_key=os.getenv(f"{p}_SECRET_KEY", ""),
            passphrase=os.getenv(f"{p}_PASSPHRASE", ""),
            username=os.getenv(f"{p}_USERNAME", ""),
            password=os.getenv(f"{p}_PASSWORD", ""),
            base_url=os.getenv(f"{p}_BASE_URL", ""),
            sandbox=_env_bool(f"{p}_SANDBOX", "true"),
            account_id=os.getenv(f"{p}_ACCOUNT_ID", ""),
            leverage=_env_optional_float(f"{p}_LEVERAGE"),
            margin_mode=margin_mode,
            system_name=os.getenv(f"{p}_SYSTEM_NAME", ""),
            app_name=os.getenv(f"{p}_APP_NAME", "multivenue"),
            app_version=os.getenv(f"{p}_APP_VERSION", "1.0"),
            gateway=os.getenv(f"{p}_GATEWAY", ""),
        )


@dataclass(frozen=True)
class StreamSettings:
    """
    Reconnection policy for streaming sessions.

    Reconnect attempt n (1-based) waits backoff_base_ms * 2**n milliseconds,
    so the defaults produce 2s, 4s, 8s, 16s, 32s and then give up.

    Attributes:
        max_reconnect_attempts: Attempts before the manager goes idle (default 5).
        backoff_base_ms: Base delay in milliseconds (default 1000).
        open_timeout_seconds: Optional limit on the WebSocket opening
                              handshake. None leaves it to the library.
    """
    max_reconnect_attempts: int = 5
    backoff_base_ms: int = 1000
    open_timeout_seconds: Optional[float] = None

    def __post_init__(self):
        if self.max_reconnect_attempts < 0:
            raise ValueError(
                f"max_reconnect_attempts must be non-negative, got: {self.max_reconnect_attempts}"
            )
        if self.backoff_base_ms < 0:
            raise ValueError(f"backoff_base_ms must be non-negative, got: {self.backoff_base_ms}")
        if self.open_timeout_seconds is not None and self.open_timeout_seconds <= 0:
            raise ValueError(
                f"open_timeout_seconds must be positive, got: {self.open_timeout_seconds}"
            )

    def backoff_delay_ms(self, attempt: int) -> int:
        """Delay before reconnect attempt `attempt` (1-based)."""
        return (2 ** attempt) * self.backoff_base_ms

    @classmethod
    def from_env(cls) -> "StreamSettings":
        """
        Load stream settings from environment variables.

        **Environment variables** (all optional):
          - STREAM_MAX_RECONNECT_ATTEMPTS (default 5)
          - STREAM_BACKOFF_BASE_MS (default 1000)
          - STREAM_OPEN_TIMEOUT_SECONDS (default unset)
        """
        return cls(
            max_reconnect_attempts=_env_int("STREAM_MAX_RECONNECT_ATTEMPTS", "5"),
            backoff_base_ms=_env_int("STREAM_BACKOFF_BASE_MS", "1000"),
            open_timeout_seconds=_env_optional_float("STREAM_OPEN_TIMEOUT_SECONDS"),
        )


@dataclass(frozen=True)
class RestSettings:
    """
    HTTP settings for REST gateways.

    Attributes:
        timeout_seconds: Per-request timeout. None (the default) means no
                         client-side timeout, leaving it to the transport.
        user_agent: User-Agent header sent with every request.
    """
    timeout_seconds: Optional[float] = None
    user_agent: str = "multivenue/1.0"

    def __post_init__(self):
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got: {self.timeout_seconds}")

    @classmethod
    def from_env(cls) -> "RestSettings":
        """Load from REST_TIMEOUT_SECONDS and REST_USER_AGENT (both optional)."""
        return cls(
            timeout_seconds=_env_optional_float("REST_TIMEOUT_SECONDS"),
            user_agent=os.getenv("REST_USER_AGENT", "multivenue/1.0"),
        )


@dataclass(frozen=True)
class Settings:
    """
    Global settings for the adapter layer.

    Venue credentials are deliberately not part of this object: they are
    per-adapter and loaded with VenueConfig.from_env(prefix) by whoever owns
    the adapter.

    Attributes:
        stream: Reconnection policy and socket timeouts.
        rest: HTTP timeout and user agent.
    """
    stream: StreamSettings = field(default_factory=StreamSettings)
    rest: RestSettings = field(default_factory=RestSettings)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(stream=StreamSettings.from_env(), rest=RestSettings.from_env())


_default_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the lazily loaded global settings.

    Settings are read from the environment on first call and cached. Tests can
    bypass this entirely by constructing Settings(...) and injecting it.
    """
    global _default_settings

    if _default_settings is None:
        _default_settings = Settings.from_env()

    return _default_settings


def reset_settings():
    """Clear the cached settings so the next get_settings() re-reads the environment."""
    global _default_settings
    _default_settings = None
