"""
checks_module/trace.py

Delegation trace: NS records of every zone from the root down to the queried
name, each step timed, followed by the final address lookup.
"""
from __future__ import annotations

import time
from typing import Any, Dict, List, Optional

from dns_module.dns_lookup import ResolverGateway
from dns_module.dns_utils import normalize_name, reg_domain, zone_suffixes
from dns_module.errors import DiagnosticsError
from dns_module.logger import get_child_logger

from .dnssec import check_ad_flag

log = get_child_logger("trace")


def _step_kind(zone: str, index: int, registered: str) -> str:
    if zone == ".":
        return "ROOT"
    if index == 1:
        return "TLD"
    if zone == registered:
        return "AUTHORITATIVE"
    return "DELEGATION"


def _server_name(kind: str, zone: str) -> str:
    return {
        "ROOT": "Root Server",
        "TLD": f"{zone} TLD Server",
        "AUTHORITATIVE": f"{zone} Authoritative NS",
        "DELEGATION": f"{zone} Nameserver",
    }[kind]


async def _timed_step(gateway: ResolverGateway, name: str, rtype: str):
    start = time.perf_counter()
    try:
        result = await gateway.resolve(name, rtype)
        error: Optional[str] = None
    except DiagnosticsError as exc:
        result, error = None, exc.message
    return result, error, round((time.perf_counter() - start) * 1000, 2)


async def trace_domain(domain: str, gateway: ResolverGateway) -> Dict[str, Any]:
    domain = normalize_name(domain)
    registered = reg_domain(domain)
    started = time.perf_counter()

    adflag = await check_ad_flag(domain, "A", gateway)

    zones = ["."] + list(reversed(zone_suffixes(domain)))
    steps: List[Dict[str, Any]] = []
    parent_ns: Optional[str] = None

    for index, zone in enumerate(zones):
        kind = _step_kind(zone, index, registered)
        result, error, timing = await _timed_step(gateway, zone, "NS")
        step: Dict[str, Any] = {
            "type": kind,
            "query": zone,
            "qtype": "NS",
            "server": parent_ns,
            "serverName": _server_name(kind, zone),
            "timing": timing,
        }
        if error is not None:
            log.warning("trace step {} NS failed: {}", zone, error)
            step["response"] = {"type": "error", "error": error}
        elif result is None or result.no_records:
            step["response"] = {"type": "no-delegation", "nameservers": []}
        else:
            step["response"] = {"type": "referral", "nameservers": result.data}
            step["authenticated"] = result.authenticated
            parent_ns = result.data[0]
        steps.append(step)

    result, error, timing = await _timed_step(gateway, domain, "A")
    final: Dict[str, Any] = {
        "type": "ANSWER",
        "query": domain,
        "qtype": "A",
        "server": parent_ns,
        "serverName": "Authoritative NS",
        "timing": timing,
    }
    if error is not None:
        final["response"] = {"type": "error", "error": error}
    elif result is None or result.no_records:
        final["response"] = {"type": "nodata", "data": []}
    else:
        final["response"] = {"type": "answer", "data": result.data}
    steps.append(final)

    total_time = round((time.perf_counter() - started) * 1000, 2)
    return {
        "domain": domain,
        "path": steps,
        "summary": {
            "totalTime": total_time,
            "queryCount": len(steps),
            "dnssecValid": bool(adflag.get("authenticated", False)),
            "finalServer": parent_ns or "Unknown",
            "recordType": "A",
            "finalAnswer": final["response"].get("data") or None,
            "resolverPath": " → ".join(s["serverName"] for s in steps),
            "totalHops": len(steps),
            "averageLatency": round(sum(s["timing"] for s in steps) / len(steps), 2),
            "registeredDomain": registered,
            "dnssecDetails": {
                "resolver": adflag.get("resolver"),
                "explanation": adflag.get("explanation") or adflag.get("error"),
            },
        },
    }
