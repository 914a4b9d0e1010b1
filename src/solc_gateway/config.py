# src/solc_gateway/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import urlsplit

DEFAULT_ALLOWED_HOSTS = (
    "unpkg.com",
    "raw.githubusercontent.com",
    "githubusercontent.com",
)

DEFAULT_NPM_CDN = "https://unpkg.com"
DEFAULT_SOLC_LIST_URL = "https://binaries.soliditylang.org/bin/list.json"
DEFAULT_SOLC_VERSION = "0.8.26"


def _int_from_env(name: str, default: int) -> int:
    v = os.environ.get(name, "").strip()
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _float_from_env(name: str, default: float) -> float:
    v = os.environ.get(name, "").strip()
    if not v:
        return default
    try:
        return float(v)
    except ValueError:
        return default


def _str_from_env(name: str, default: str) -> str:
    return os.environ.get(name, "").strip() or default


def _hosts_from_env(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    return tuple(h.strip().lower() for h in raw.split(",") if h.strip())


DEFAULT_PORTS = {"http": 80, "https": 443}


def host_of(url: str) -> str:
    """
    Host used for allow-list checks: lower-cased hostname, plus ":port" when the URL names a
    port other than the scheme's default.
    Returns "" for anything that does not parse as a URL with a host.
    """
    try:
        parts = urlsplit(url)
        hostname = (parts.hostname or "").lower()
        port = parts.port
    except ValueError:
        return ""
    if not hostname:
        return ""
    if port and port != DEFAULT_PORTS.get(parts.scheme.lower()):
        return f"{hostname}:{port}"
    return hostname


@dataclass(frozen=True)
class GatewayConfig:
    """
    Process-wide settings. Built once at startup and shared read-only by every request.
    """

    host: str = "0.0.0.0"
    port: int = 8080

    # import graph limits
    max_sources: int = 64
    max_total_bytes: int = 1_500_000

    npm_cdn: str = DEFAULT_NPM_CDN
    allowed_hosts: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_ALLOWED_HOSTS))

    solc_list_url: str = DEFAULT_SOLC_LIST_URL
    default_solc_version: str = DEFAULT_SOLC_VERSION

    fetch_timeout_s: float = 20.0
    request_timeout_s: float = 120.0

    # HTTP admission
    max_body_bytes: int = 512 * 1024
    rate_limit_per_minute: int = 30

    def __post_init__(self) -> None:
        # The CDN must always be fetchable, whatever the allow-list says.
        cdn_host = host_of(self.npm_cdn)
        hosts = frozenset(h.lower() for h in self.allowed_hosts)
        if cdn_host:
            hosts = hosts | {cdn_host}
        object.__setattr__(self, "allowed_hosts", hosts)
        object.__setattr__(self, "npm_cdn", self.npm_cdn.rstrip("/"))

    @classmethod
    def from_env(cls) -> "GatewayConfig":
        return cls(
            host=_str_from_env("SOLC_GATEWAY_HOST", "0.0.0.0"),
            port=_int_from_env("PORT", 8080),
            max_sources=_int_from_env("MAX_SOURCES", 64),
            max_total_bytes=_int_from_env("MAX_TOTAL_BYTES", 1_500_000),
            npm_cdn=_str_from_env("NPM_CDN", DEFAULT_NPM_CDN),
            allowed_hosts=frozenset(_hosts_from_env("SOLC_GATEWAY_ALLOWED_HOSTS", DEFAULT_ALLOWED_HOSTS)),
            solc_list_url=_str_from_env("SOLC_LIST_URL", DEFAULT_SOLC_LIST_URL),
            default_solc_version=_str_from_env("SOLC_DEFAULT_VERSION", DEFAULT_SOLC_VERSION),
            fetch_timeout_s=_float_from_env("SOLC_GATEWAY_FETCH_TIMEOUT", 20.0),
            request_timeout_s=_float_from_env("SOLC_GATEWAY_REQUEST_TIMEOUT", 120.0),
            max_body_bytes=_int_from_env("SOLC_GATEWAY_MAX_BODY_BYTES", 512 * 1024),
            rate_limit_per_minute=_int_from_env("SOLC_GATEWAY_RATE_LIMIT", 30),
        )
