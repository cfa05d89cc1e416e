"""
checks_module/nameservers.py

Delegation health checks:

- check_ns_soa(): NS + SOA for a domain and whether every nameserver resolves
- check_glue(): which nameservers sit inside the zone (and so need glue in the
  parent) and whether A/AAAA glue exists for them
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List

from dns_module.dns_lookup import ResolverGateway
from dns_module.dns_utils import is_in_bailiwick, normalize_name
from dns_module.errors import DiagnosticsError
from dns_module.logger import get_child_logger

log = get_child_logger("nameservers")


async def check_ns_soa(domain: str, gateway: ResolverGateway) -> Dict[str, Any]:
    domain = normalize_name(domain)
    ns_result, soa_result = await asyncio.gather(
        gateway.resolve(domain, "NS"),
        gateway.resolve(domain, "SOA"),
        return_exceptions=True,
    )
    for outcome in (ns_result, soa_result):
        if isinstance(outcome, DiagnosticsError):
            log.warning("NS/SOA lookup for {} failed: {}", domain, outcome.message)
            return {"domain": domain, "error": outcome.message}
        if isinstance(outcome, BaseException):
            raise outcome

    nameservers = ns_result.data
    soa = soa_result.data[0] if soa_result.data else None

    async def _check(ns: str) -> Dict[str, Any]:
        rcode, result = await gateway.try_resolve(ns, "A")
        if result is None:
            return {"nameserver": ns, "resolved": False, "error": rcode}
        return {"nameserver": ns, "resolved": True, "addresses": result.data}

    checks = list(await asyncio.gather(*(_check(ns) for ns in nameservers)))
    return {
        "domain": domain,
        "nameservers": nameservers,
        "soa": soa,
        "nameserverChecks": checks,
        "consistency": all(c["resolved"] for c in checks),
    }


def glue_status(glue_a: List[str], glue_aaaa: List[str]) -> str:
    if not glue_a and not glue_aaaa:
        return "error"
    if not glue_a or not glue_aaaa:
        return "warning"
    return "ok"


async def _glue_entry(ns: str, zone: str, gateway: ResolverGateway) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "nameserverName": ns,
        "requiresGlue": is_in_bailiwick(ns, zone),
        "glueA": [],
        "glueAAAA": [],
        "status": "ok",
    }
    if not entry["requiresGlue"]:
        return entry

    (rc4, r4), (rc6, r6) = await asyncio.gather(
        gateway.try_resolve(ns, "A"),
        gateway.try_resolve(ns, "AAAA"),
    )
    # a failed family simply stays empty
    if rc4 == "NOERROR" and r4 is not None:
        entry["glueA"] = r4.data
    if rc6 == "NOERROR" and r6 is not None:
        entry["glueAAAA"] = r6.data
    entry["status"] = glue_status(entry["glueA"], entry["glueAAAA"])
    return entry


async def check_glue(zone: str, gateway: ResolverGateway) -> Dict[str, Any]:
    zone = normalize_name(zone)
    parent = ".".join(zone.split(".")[1:])
    try:
        ns_result = await gateway.resolve(zone, "NS")
    except DiagnosticsError as exc:
        log.warning("Glue check NS lookup for {} failed: {}", zone, exc.message)
        return {"zone": zone, "parent": parent, "error": f"Glue check failed: {exc.message}"}
    if ns_result.no_records:
        return {"zone": zone, "parent": parent, "error": "Glue check failed: No NS records found for zone"}

    nameservers = list(await asyncio.gather(*(_glue_entry(ns, zone, gateway) for ns in ns_result.data)))

    requiring = [n for n in nameservers if n["requiresGlue"]]
    valid = [n for n in requiring if n["status"] == "ok"]
    partial = [n for n in requiring if n["status"] == "warning"]
    missing = [n for n in requiring if n["status"] == "error"]

    issues = []
    if missing:
        issues.append(f"{len(missing)} nameserver(s) require glue but have none")
    if partial:
        issues.append(f"{len(partial)} nameserver(s) have glue for only one address family")

    return {
        "zone": zone,
        "parent": parent,
        "nameservers": nameservers,
        "summary": {
            "total": len(nameservers),
            "requiringGlue": len(requiring),
            "withValidGlue": len(valid),
            "partialGlue": len(partial),
            "missingGlue": len(missing),
            "issues": issues,
        },
    }
