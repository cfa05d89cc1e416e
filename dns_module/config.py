"""
dns_module/config.py

Process-wide, immutable configuration for the diagnostics engine.

Built once at startup from the environment (``.env`` honoured) and injected
into the gateway, the AXFR prober and the API. Nothing reads the environment
after ``DiagnosticsConfig.from_env()`` returns.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

load_dotenv()

# DoH JSON endpoints (application/dns-json)
DOH_ENDPOINTS: Dict[str, str] = {
    "cloudflare": "https://cloudflare-dns.com/dns-query",
    "google": "https://dns.google/resolve",
    "quad9": "https://dns.quad9.net:5053/dns-query",
    "opendns": "https://doh.opendns.com/dns-query",
}

# Well-known resolver IP per provider, used by the native fallback
PROVIDER_SERVERS: Dict[str, str] = {
    "cloudflare": "1.1.1.1",
    "google": "8.8.8.8",
    "quad9": "9.9.9.9",
    "opendns": "208.67.222.222",
}

PROVIDERS: Tuple[str, ...] = tuple(DOH_ENDPOINTS)

DEFAULT_TRUSTED_DNS_SERVERS: Tuple[str, ...] = (
    # Cloudflare
    "1.1.1.1", "1.0.0.1", "2606:4700:4700::1111", "2606:4700:4700::1001",
    # Google
    "8.8.8.8", "8.8.4.4", "2001:4860:4860::8888", "2001:4860:4860::8844",
    # Quad9
    "9.9.9.9", "149.112.112.112", "2620:fe::fe", "2620:fe::9",
    # OpenDNS
    "208.67.222.222", "208.67.220.220", "2620:119:35::35", "2620:119:53::53",
    # Comodo Secure DNS
    "8.26.56.26", "8.20.247.20",
    # DNS.WATCH
    "84.200.69.80", "84.200.70.40",
    # Verisign
    "64.6.64.6", "64.6.65.6",
    # AdGuard DNS
    "94.140.14.14", "94.140.15.15", "2a10:50c0::ad1:ff", "2a10:50c0::ad2:ff",
)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if not raw:
        return default
    return tuple(s.strip() for s in raw.split(",") if s.strip())


@dataclass(frozen=True)
class DiagnosticsConfig:
    """Immutable engine configuration. Build with ``from_env()`` or directly in tests."""

    allow_custom_dns: bool = False
    block_private_dns_ips: bool = True
    allowed_dns_servers: Tuple[str, ...] = DEFAULT_TRUSTED_DNS_SERVERS
    default_provider: str = "cloudflare"
    doh_timeout_ms: int = 3500
    native_timeout_ms: int = 2000
    axfr_tool: str = "dig"
    axfr_timeout_s: float = 10.0
    axfr_max_output_bytes: int = 5 * 1024 * 1024
    axfr_max_nameservers: int = 10
    spf_max_lookups: int = 10
    doh_endpoints: Dict[str, str] = field(default_factory=lambda: dict(DOH_ENDPOINTS))
    provider_servers: Dict[str, str] = field(default_factory=lambda: dict(PROVIDER_SERVERS))

    @classmethod
    def from_env(cls) -> "DiagnosticsConfig":
        provider = (os.getenv("DIAG_DEFAULT_PROVIDER") or "cloudflare").strip().lower()
        if provider not in DOH_ENDPOINTS:
            provider = "cloudflare"
        return cls(
            allow_custom_dns=_env_bool("DIAG_ALLOW_CUSTOM_DNS", False),
            block_private_dns_ips=_env_bool("DIAG_BLOCK_PRIVATE_DNS_IPS", True),
            allowed_dns_servers=_env_list("DIAG_ALLOWED_DNS_SERVERS", DEFAULT_TRUSTED_DNS_SERVERS),
            default_provider=provider,
            doh_timeout_ms=_env_int("DIAG_DOH_TIMEOUT_MS", 3500),
            native_timeout_ms=_env_int("DIAG_NATIVE_TIMEOUT_MS", 2000),
            axfr_tool=os.getenv("DIAG_AXFR_TOOL", "dig"),
            axfr_timeout_s=float(_env_int("DIAG_AXFR_TIMEOUT_S", 10)),
            axfr_max_output_bytes=_env_int("DIAG_AXFR_MAX_OUTPUT_BYTES", 5 * 1024 * 1024),
            axfr_max_nameservers=_env_int("DIAG_AXFR_MAX_NAMESERVERS", 10),
            spf_max_lookups=_env_int("DIAG_SPF_MAX_LOOKUPS", 10),
        )

    def endpoint_for(self, provider: Optional[str]) -> str:
        return self.doh_endpoints.get(provider or self.default_provider, self.doh_endpoints["cloudflare"])

    def server_for(self, provider: Optional[str]) -> str:
        return self.provider_servers.get(provider or self.default_provider, self.provider_servers["cloudflare"])
