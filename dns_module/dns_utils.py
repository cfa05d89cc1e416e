# /dns_diagnostics/dns_module/dns_utils.py
from __future__ import annotations

import ipaddress
import os
import re
from typing import List, Optional

import idna
import tldextract

from .errors import InputValidationError

# --------------------------------------------------------------------
# PSL extractor (shared). The bundled snapshot is used; no network fetch.
# --------------------------------------------------------------------
_EXTRACTOR = tldextract.TLDExtract(
    cache_dir=os.getenv("DIAG_TLDEXTRACT_CACHE") or None,
    suffix_list_urls=(),
)

DOMAIN_PATTERN = re.compile(r"^([a-zA-Z0-9_]([a-zA-Z0-9_-]{0,61}[a-zA-Z0-9_])?\.)+[a-zA-Z]{2,}$")
MAX_DOMAIN_LENGTH = 253

_QUOTED = re.compile(r'"((?:[^"\\]|\\.)*)"')


# --------------------------------------------------------------------
# Name and TXT normalization
# --------------------------------------------------------------------
def normalize_name(value: Optional[str]) -> str:
    """
    Canonical form used for every cache key and comparison: lowercase,
    punycode for non-ASCII labels, no trailing dot. Labels idna refuses are
    passed through untouched and left for is_valid_domain() to reject.
    """
    text = str(value or "").strip().strip(".")
    out: List[str] = []
    for label in filter(None, text.split(".")):
        if not label.isascii():
            try:
                label = idna.encode(label, uts46=True, std3_rules=False).decode("ascii")
            except idna.IDNAError:
                pass
        out.append(label)
    return ".".join(out).lower()


def normalize_txt(text: Optional[str]) -> str:
    """Drop one pair of surrounding quotes. Case is preserved."""
    value = (text or "").strip()
    if len(value) > 1 and value.startswith('"') and value.endswith('"'):
        return value[1:-1]
    return value


def join_txt_strings(data: str) -> str:
    """
    Collapse presentation-format TXT data (``"part one" "part two"``) into the
    single concatenated string the native resolver path yields.
    Unquoted input is returned unchanged.
    """
    s = (data or "").strip()
    if not s.startswith('"'):
        return s
    parts = _QUOTED.findall(s)
    if not parts:
        return normalize_txt(s)
    return "".join(re.sub(r"\\(.)", r"\1", p) for p in parts)


def is_valid_domain(domain: str) -> bool:
    if not domain or len(domain) > MAX_DOMAIN_LENGTH:
        return False
    return bool(DOMAIN_PATTERN.match(domain))


def clean_domain(value: Optional[str], field: str = "domain") -> str:
    """
    Normalize and validate a user-supplied domain name.
    Raises InputValidationError before any network call is made.
    """
    if not value or not str(value).strip():
        raise InputValidationError(f"{field} is required")
    domain = normalize_name(value)
    if not is_valid_domain(domain):
        raise InputValidationError(f"Invalid domain name format: {value}", {"field": field})
    return domain


def clean_ip(value: Optional[str]) -> str:
    if not value or not str(value).strip():
        raise InputValidationError("ip is required")
    try:
        return str(ipaddress.ip_address(str(value).strip()))
    except ValueError:
        raise InputValidationError(f"Invalid IP address: {value}", {"field": "ip"})


def create_reverse_zone(ip: str) -> str:
    """
    8.8.8.8     -> 8.8.8.8.in-addr.arpa
    2001:db8::1 -> 1.0.0.0....8.b.d.0.1.0.0.2.ip6.arpa (32 nibble labels)
    """
    return ipaddress.ip_address(ip.strip()).reverse_pointer


def zone_suffixes(name: str) -> List[str]:
    """Every suffix of ``name``, most specific first: a.b.c -> [a.b.c, b.c, c]."""
    labels = [lbl for lbl in name.strip(".").split(".") if lbl]
    return [".".join(labels[i:]) for i in range(len(labels))]


def is_in_bailiwick(host: str, zone: str) -> bool:
    """True when ``host`` is ``zone`` itself or sits below it."""
    host = normalize_name(host)
    zone = normalize_name(zone)
    return bool(zone) and (host == zone or host.endswith("." + zone))


def reg_domain(domain: Optional[str]) -> str:
    """eTLD+1 of ``domain`` per the bundled public suffix list; "" when it has none."""
    if not domain:
        return ""
    ext = _EXTRACTOR(normalize_name(domain))
    if not (ext.domain and ext.suffix):
        return ""
    return f"{ext.domain}.{ext.suffix}"
