"""
checks_module/dmarc.py

Fetch and parse the DMARC policy published at ``_dmarc.<domain>``.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Iterable, Optional

from dns_module.dns_lookup import ResolverGateway
from dns_module.dns_utils import normalize_name, normalize_txt
from dns_module.errors import DiagnosticsError
from dns_module.logger import get_child_logger

log = get_child_logger("dmarc")

POLICIES = ("none", "quarantine", "reject")


def _tag(name: str) -> "re.Pattern[str]":
    # anchored on tag boundaries so sp= never satisfies p=
    return re.compile(r"(?:^|;)\s*" + name + r"\s*=\s*([^;]*)", re.IGNORECASE)


_TAGS = {t: _tag(t) for t in ("p", "sp", "adkim", "aspf", "rua", "ruf", "fo", "pct")}


def _value(record: str, tag: str) -> Optional[str]:
    m = _TAGS[tag].search(record)
    if not m:
        return None
    v = m.group(1).strip()
    return v or None


def _policy(value: Optional[str]) -> str:
    v = (value or "").lower()
    return v if v in POLICIES else "unknown"


def _alignment(value: Optional[str]) -> str:
    v = (value or "").lower()
    return v if v in ("r", "s") else "r"


def select_dmarc_record(texts: Iterable[str]) -> Optional[str]:
    for t in texts:
        clean = normalize_txt(t)
        if clean.startswith("v=DMARC1"):
            return clean
    return None


def parse_dmarc(record: str) -> Dict[str, Any]:
    """Structured view of a DMARC record. Missing tags take their RFC 7489 defaults."""
    sp = _value(record, "sp")
    return {
        "raw": record,
        "policy": _policy(_value(record, "p")),
        "subdomainPolicy": _policy(sp) if sp is not None else None,
        "alignment": {
            "dkim": _alignment(_value(record, "adkim")),
            "spf": _alignment(_value(record, "aspf")),
        },
        "reporting": {
            "aggregate": _value(record, "rua"),
            "forensic": _value(record, "ruf"),
            "failureOptions": _value(record, "fo") or "0",
        },
        "percentage": _value(record, "pct") or "100",
    }


def dmarc_issues(parsed: Dict[str, Any]) -> list:
    issues = []
    if parsed["policy"] == "none":
        issues.append("Policy is set to none - no action taken on failures")
    elif parsed["policy"] == "unknown":
        issues.append("Policy (p=) tag is missing or invalid")
    if not parsed["reporting"]["aggregate"]:
        issues.append("No aggregate reporting address specified")
    if parsed["percentage"] != "100":
        issues.append(f"Only {parsed['percentage']}% of messages are subject to DMARC policy")
    return issues


async def check_dmarc(domain: str, gateway: ResolverGateway) -> Dict[str, Any]:
    dmarc_domain = f"_dmarc.{normalize_name(domain)}"
    try:
        result = await gateway.resolve(dmarc_domain, "TXT")
    except DiagnosticsError as exc:
        log.warning("DMARC lookup for {} failed: {}", dmarc_domain, exc.message)
        return {"error": f"Error determining DMARC records: {exc.message}", "domain": dmarc_domain}

    record = select_dmarc_record(result.data)
    if record is None:
        return {"hasRecord": False, "message": "No DMARC record found", "domain": dmarc_domain}

    parsed = parse_dmarc(record)
    return {
        "hasRecord": True,
        "domain": dmarc_domain,
        "record": record,
        "parsed": parsed,
        "issues": dmarc_issues(parsed),
    }
