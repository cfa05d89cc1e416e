"""
dns_module/security.py

SSRF guard for user-supplied resolver addresses.

A custom resolver IP reaches the native resolver only after
``validate_custom_dns_server`` accepts it; the allow-list takes precedence
over the private-range block.
"""
from __future__ import annotations

import ipaddress
from typing import Iterable, Optional, Tuple

from .config import DiagnosticsConfig
from .errors import InputValidationError, ResolverPolicyError
from .logger import get_child_logger

log = get_child_logger("security")

PRIVATE_MESSAGE = "Private IP addresses are not allowed for security reasons. Use a public DNS server."
NOT_ALLOWED_MESSAGE = (
    "Custom DNS server not allowed. For security reasons, only trusted public DNS servers are permitted. "
    "You can edit this with the DIAG_ALLOW_CUSTOM_DNS and DIAG_ALLOWED_DNS_SERVERS environment variables."
)


def is_private_ip(ip: str) -> bool:
    """
    True for loopback, RFC 1918, link-local, multicast, unspecified, CGNAT,
    documentation and other non-global ranges (IPv4-mapped IPv6 included).
    Unparseable input is treated as private.
    """
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return True
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        addr = addr.ipv4_mapped
    return (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_multicast
        or addr.is_unspecified
        or addr.is_reserved
        or not addr.is_global
    )


def check_dns_server(
    ip: str,
    allowed_servers: Iterable[str],
    block_private: bool = True,
    enforce_allow_list: bool = True,
) -> Tuple[bool, Optional[str]]:
    """Return (valid, error_message). Does not raise."""
    clean = ip.strip()
    try:
        addr = ipaddress.ip_address(clean)
    except ValueError:
        return False, "Invalid IP address format. Must be a valid IPv4 or IPv6 address."

    allowed = {str(ipaddress.ip_address(s.strip())) for s in allowed_servers if _parses(s)}
    if str(addr) in allowed:
        return True, None

    if block_private and is_private_ip(clean):
        return False, PRIVATE_MESSAGE

    if enforce_allow_list and allowed:
        return False, NOT_ALLOWED_MESSAGE

    return True, None


def validate_custom_dns_server(server: str, config: DiagnosticsConfig) -> str:
    """
    Raise unless ``server`` may be used as a resolver. Returns the canonical IP.

    Malformed input is an input error (400); a well-formed address refused by
    policy is a ResolverPolicyError (403).
    """
    if config.allow_custom_dns and not config.block_private_dns_ips:
        return server.strip()

    try:
        canonical = str(ipaddress.ip_address(server.strip()))
    except ValueError:
        raise InputValidationError(
            "Invalid IP address format. Must be a valid IPv4 or IPv6 address.",
            {"server": server},
        )

    valid, message = check_dns_server(
        canonical,
        config.allowed_dns_servers,
        block_private=config.block_private_dns_ips,
        enforce_allow_list=not config.allow_custom_dns,
    )
    if not valid:
        log.warning("Rejected custom DNS server {}: {}", canonical, message)
        raise ResolverPolicyError(message or NOT_ALLOWED_MESSAGE, canonical)
    return canonical


def _parses(value: str) -> bool:
    try:
        ipaddress.ip_address(value.strip())
        return True
    except ValueError:
        return False
