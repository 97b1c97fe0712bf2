"""Process-wide gateway settings, read from the environment.

Settings are read on each call so tests can monkeypatch the environment
without reloading modules.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_GRAPH_BASE_URL = "https://graph.facebook.com"
DEFAULT_GRAPH_API_VERSION = "v21.0"
DEFAULT_HTTP_TIMEOUT = 30.0


@dataclass(frozen=True)
class GatewaySettings:
    """Gateway configuration.

    Attributes:
        graph_base_url: Provider Graph API base URL (no trailing slash).
        default_api_version: API version for accounts that do not set one.
        http_timeout: Upper bound (seconds) for any single provider call.
        app_secret: Fallback app secret for accounts without their own.
        webhook_verify_token: Fallback token for the subscription handshake.
    """

    graph_base_url: str = DEFAULT_GRAPH_BASE_URL
    default_api_version: str = DEFAULT_GRAPH_API_VERSION
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    app_secret: str | None = field(default=None, repr=False)
    webhook_verify_token: str | None = field(default=None, repr=False)


def _float_from_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number of seconds") from None
    if value <= 0:
        raise RuntimeError(f"{name} must be positive")
    return value


def get_settings() -> GatewaySettings:
    """Load settings from environment variables.

    Env vars:
    - WAGATE_GRAPH_BASE_URL (default: https://graph.facebook.com)
    - WAGATE_GRAPH_API_VERSION (default: v21.0)
    - WAGATE_HTTP_TIMEOUT (default: 30)
    - WAGATE_APP_SECRET (optional)
    - WAGATE_WEBHOOK_VERIFY_TOKEN (optional)
    """
    return GatewaySettings(
        graph_base_url=os.environ.get("WAGATE_GRAPH_BASE_URL", DEFAULT_GRAPH_BASE_URL).rstrip("/"),
        default_api_version=os.environ.get("WAGATE_GRAPH_API_VERSION", DEFAULT_GRAPH_API_VERSION),
        http_timeout=_float_from_env("WAGATE_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        app_secret=os.environ.get("WAGATE_APP_SECRET") or None,
        webhook_verify_token=os.environ.get("WAGATE_WEBHOOK_VERIFY_TOKEN") or None,
    )
