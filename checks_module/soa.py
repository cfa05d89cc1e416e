"""
checks_module/soa.py

SOA serial and timer analysis.
"""
from __future__ import annotations

import datetime
import time
from typing import Any, Dict, List, Optional

from dns_module.dns_lookup import ResolverGateway, ResolverOptions
from dns_module.dns_utils import normalize_name
from dns_module.errors import DiagnosticsError
from dns_module.logger import get_child_logger

log = get_child_logger("soa")

DATE_BASED = "dateBased"
UNIX_TIMESTAMP = "unixTimestamp"
SEQUENTIAL = "sequential"

# 1980-01-01T00:00:00Z
MIN_TIMESTAMP = 315532800


def format_duration(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    if seconds < 86400:
        return f"{seconds // 3600}h {(seconds % 3600) // 60}m"
    return f"{seconds // 86400}d {(seconds % 86400) // 3600}h"


def analyze_serial(serial: int, now: Optional[float] = None) -> Dict[str, Any]:
    """Guess the numbering scheme behind an SOA serial."""
    now = time.time() if now is None else now
    text = str(serial)

    if len(text) == 10:
        year, month, day, seq = int(text[:4]), int(text[4:6]), int(text[6:8]), int(text[8:])
        current_year = datetime.datetime.fromtimestamp(now, tz=datetime.timezone.utc).year
        if 1990 <= year <= current_year + 5:
            try:
                date = datetime.date(year, month, day)
            except ValueError:
                date = None
            if date is not None:
                return {
                    "format": DATE_BASED,
                    "likely": True,
                    "date": date.isoformat(),
                    "sequence": seq,
                    "interpretation": f"Date-based serial: {date.strftime('%a %b %d %Y')}, sequence {seq:02d}",
                }

    if MIN_TIMESTAMP <= serial <= now + 86400 * 365:
        instant = datetime.datetime.fromtimestamp(serial, tz=datetime.timezone.utc)
        return {
            "format": UNIX_TIMESTAMP,
            "likely": True,
            "date": instant.date().isoformat(),
            "interpretation": f"Unix timestamp: {instant.isoformat().replace('+00:00', 'Z')}",
        }

    return {
        "format": SEQUENTIAL,
        "likely": False,
        "interpretation": f"Sequential or custom format: {serial}",
    }


def soa_recommendations(refresh: int, retry: int, expire: int, minimum: int, ttl: int) -> List[Dict[str, str]]:
    recs: List[Dict[str, str]] = []

    def add(severity: str, field: str, message: str) -> None:
        recs.append({"severity": severity, "field": field, "message": message})

    if refresh < 3600:
        add("warning", "refresh", "Refresh interval is very low (< 1 hour), may cause excessive load on primary")
    if refresh > 86400:
        add("info", "refresh", "Refresh interval is high (> 24 hours), secondaries may be slow to detect changes")
    if retry >= refresh:
        add("error", "retry", "Retry interval should be less than refresh interval")
    if expire < refresh * 2:
        add("warning", "expire", "Expire time should be at least 2x the refresh interval")
    if minimum > 86400:
        add("warning", "minimum", "Minimum TTL is high (> 24 hours), may slow error recovery")
    if ttl < 300:
        add("info", "ttl", "SOA TTL is low (< 5 minutes), good for rapid DNS changes")
    return recs


async def analyze_soa_serial(
    domain: str,
    gateway: ResolverGateway,
    options: Optional[ResolverOptions] = None,
) -> Dict[str, Any]:
    domain = normalize_name(domain)
    try:
        result = await gateway.resolve(domain, "SOA", options)
    except DiagnosticsError as exc:
        log.warning("SOA lookup for {} failed: {}", domain, exc.message)
        return {"error": exc.message, "domain": domain}

    if result.no_records or not result.records:
        return {"error": "No SOA record found", "domain": domain}

    record = result.records[0]
    parts = record.data.split()
    if len(parts) < 7:
        return {"error": "Invalid SOA record format", "domain": domain, "raw": record.data}
    try:
        serial, refresh, retry, expire, minimum = (int(p) for p in parts[2:7])
    except ValueError:
        return {"error": "Invalid SOA record format", "domain": domain, "raw": record.data}

    mname, rname = parts[0], parts[1]
    ttl = record.ttl
    serial_analysis = analyze_serial(serial)

    return {
        "domain": domain,
        "serial": serial,
        "serialFormat": serial_analysis["format"],
        "refresh": refresh,
        "retry": retry,
        "expire": expire,
        "minimum": minimum,
        "ttl": ttl,
        "soa": {
            "primaryNameserver": mname,
            "responsibleEmail": rname.replace(".", "@", 1),
            "serial": serial,
            "refresh": refresh,
            "retry": retry,
            "expire": expire,
            "minimum": minimum,
            "ttl": ttl,
        },
        "serialAnalysis": serial_analysis,
        "timings": {
            "refresh": format_duration(refresh),
            "retry": format_duration(retry),
            "expire": format_duration(expire),
            "minimum": format_duration(minimum),
            "ttl": format_duration(ttl),
        },
        "recommendations": soa_recommendations(refresh, retry, expire, minimum, ttl),
        "warnings": list(result.warnings),
    }
