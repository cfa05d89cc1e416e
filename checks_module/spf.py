"""
checks_module/spf.py

SPF expansion and flattening.

- evaluate_spf(): recursive include:/redirect= expansion bounded by a lookup
  budget and a visited-domain set, both owned by one SpfContext per top-level
  call. Branch failures are embedded in the branch, never raised.
- flatten_spf(): rewrites a record into literal ip4:/ip6: terms by expanding
  includes/redirects and resolving a/mx mechanisms.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from dns_module.dns_lookup import ResolverGateway
from dns_module.dns_utils import is_valid_domain, normalize_name, normalize_txt
from dns_module.errors import DiagnosticsError
from dns_module.logger import get_child_logger

log = get_child_logger("spf")

LIMIT_MESSAGE = "SPF lookup limit exceeded or circular reference"
NO_RECORD_MESSAGE = "No SPF record found"

# a, a:host, a/24, a:host/24//64 (same for mx)
_HOST_MECHANISM = re.compile(r"^([+\-~?]?)(a|mx)(?::([^/]+))?(/\d{1,2})?(//\d{1,3})?$", re.IGNORECASE)


def select_spf_record(texts: Iterable[str]) -> Optional[str]:
    """First TXT string (quotes stripped) that starts with v=spf1."""
    for t in texts:
        clean = normalize_txt(t)
        if clean.lower().startswith("v=spf1"):
            return clean
    return None


@dataclass
class SpfContext:
    """Recursion state for one evaluation tree. Never shared between requests."""
    max_lookups: int = 10
    visited: Set[str] = field(default_factory=set)
    count: int = 0


async def evaluate_spf(
    domain: str,
    gateway: ResolverGateway,
    ctx: Optional[SpfContext] = None,
) -> Dict[str, Any]:
    """
    Expand the SPF record of ``domain``.

    Terms are processed left to right and includes are evaluated depth-first
    before the next term, so the lookup budget is consumed deterministically.
    """
    if ctx is None:
        ctx = SpfContext(max_lookups=gateway.config.spf_max_lookups)

    key = normalize_name(domain)
    if key in ctx.visited or ctx.count > ctx.max_lookups:
        log.debug("SPF guard tripped at {} (count={})", key, ctx.count)
        return {"error": LIMIT_MESSAGE}
    if not is_valid_domain(key):
        return {"error": f"Invalid SPF target domain: {domain}"}

    ctx.visited.add(key)
    ctx.count += 1

    try:
        result = await gateway.resolve(key, "TXT")
    except DiagnosticsError as exc:
        log.warning("SPF TXT lookup for {} failed: {}", key, exc.message)
        return {"error": exc.message}

    record = select_spf_record(result.data)
    if record is None:
        return {"error": NO_RECORD_MESSAGE}

    node: Dict[str, Any] = {
        "record": record,
        "mechanisms": [],
        "includes": [],
        "redirects": [],
        "lookupCount": 0,
    }
    for term in record.split():
        lower = term.lower()
        if lower.startswith("include:"):
            target = term[len("include:"):]
            node["includes"].append({"domain": target, "result": await evaluate_spf(target, gateway, ctx)})
        elif lower.startswith("redirect="):
            target = term[len("redirect="):]
            node["redirects"].append({"domain": target, "result": await evaluate_spf(target, gateway, ctx)})
        else:
            node["mechanisms"].append(term)

    node["lookupCount"] = ctx.count
    return node


# --------------------------------------------------------------------
# Flattening
# --------------------------------------------------------------------
@dataclass
class _FlattenState:
    max_lookups: int
    lookups: int = 1  # the record itself
    max_depth: int = 0
    visited: Set[str] = field(default_factory=set)
    expansions: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    budget_warned: bool = False

    def spend(self) -> bool:
        """Count one DNS-querying term; False once the budget is exhausted."""
        self.lookups += 1
        # the record's own fetch does not count against the budget
        if self.lookups - 1 > self.max_lookups:
            if not self.budget_warned:
                self.warnings.append("DNS lookup budget exhausted; remaining terms were kept unflattened")
                self.budget_warned = True
            return False
        return True

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)


async def _addresses(gateway: ResolverGateway, host: str) -> Tuple[List[str], List[str]]:
    rc4, r4 = await gateway.try_resolve(host, "A")
    rc6, r6 = await gateway.try_resolve(host, "AAAA")
    v4 = r4.data if rc4 == "NOERROR" and r4 is not None else []
    v6 = r6.data if rc6 == "NOERROR" and r6 is not None else []
    return v4, v6


def _ip_terms(qualifier: str, v4: List[str], v6: List[str], cidr4: str, cidr6: str) -> List[str]:
    q = "" if qualifier == "+" else qualifier
    return [f"{q}ip4:{ip}{cidr4}" for ip in v4] + [f"{q}ip6:{ip}{cidr6}" for ip in v6]


async def _expand_host_mechanism(
    match: "re.Match[str]",
    term: str,
    domain: str,
    gateway: ResolverGateway,
    state: _FlattenState,
) -> List[str]:
    qualifier, mech, host, cidr4, cidr6 = match.groups()
    host = host or domain
    cidr4 = cidr4 or ""
    cidr6 = cidr6[1:] if cidr6 else ""

    if not state.spend():
        return [term]

    if mech.lower() == "a":
        v4, v6 = await _addresses(gateway, host)
        if not v4 and not v6:
            state.warn(f"{term} resolved to no addresses")
        return _ip_terms(qualifier, v4, v6, cidr4, cidr6)

    rcode, mx = await gateway.try_resolve(host, "MX")
    if rcode != "NOERROR" or mx is None:
        state.warn(f"{term} resolved to no mail exchangers ({rcode})")
        return []
    out: List[str] = []
    # RFC 7208 4.6.4: at most 10 MX names are looked up per mechanism
    for data in mx.data[:10]:
        exchange = data.split()[-1]
        v4, v6 = await _addresses(gateway, exchange)
        out.extend(_ip_terms(qualifier, v4, v6, cidr4, cidr6))
    return out


async def _expand_record(
    domain: str,
    record: str,
    gateway: ResolverGateway,
    state: _FlattenState,
    depth: int,
) -> Tuple[List[str], Optional[str]]:
    """Return (flattened terms, all-term) for one record."""
    state.max_depth = max(state.max_depth, depth)
    terms: List[str] = []
    all_term: Optional[str] = None
    redirect: Optional[str] = None

    for term in record.split():
        lower = term.lower()
        if lower == "v=spf1":
            continue
        if lower.lstrip("+-~?") == "all":
            all_term = term
            continue
        if lower.startswith("redirect="):
            redirect = term[len("redirect="):]
            continue
        if lower.startswith("exp=") or lower.startswith("ip4:") or lower.startswith("ip6:") \
                or lower.startswith("+ip4:") or lower.startswith("+ip6:"):
            terms.append(term if not term.startswith("+") else term[1:])
            continue

        if lower.lstrip("+-~?").startswith("include:"):
            qualifier = term[0] if term[0] in "+-~?" else ""
            target = term.split(":", 1)[1]
            if qualifier not in ("", "+"):
                state.spend()
                state.warn(f"{term} has a non-pass qualifier and cannot be flattened")
                terms.append(term)
                continue
            sub_terms, _ = await _expand_include(target, term, gateway, state, depth, "include")
            terms.extend(sub_terms)
            continue

        match = _HOST_MECHANISM.match(term)
        if match:
            terms.extend(await _expand_host_mechanism(match, term, domain, gateway, state))
            continue

        if lower.lstrip("+-~?").startswith(("ptr", "exists:")):
            state.spend()
            state.warn(f"{term} cannot be flattened and still requires DNS lookups")
            terms.append(term)
            continue

        terms.append(term)

    # redirect= only applies when the record has no all term
    if redirect and all_term is None:
        sub_terms, all_term = await _expand_include(redirect, f"redirect={redirect}", gateway, state, depth, "redirect")
        terms.extend(sub_terms)
    return terms, all_term


async def _expand_include(
    target: str,
    term: str,
    gateway: ResolverGateway,
    state: _FlattenState,
    depth: int,
    kind: str,
) -> Tuple[List[str], Optional[str]]:
    key = normalize_name(target)
    if key in state.visited:
        state.spend()
        state.warn(f"Circular reference detected at {term}")
        return [], None
    if not state.spend():
        return [term], None

    state.visited.add(key)
    entry: Dict[str, Any] = {"type": kind, "value": target, "depth": depth + 1, "resolved": []}
    state.expansions.append(entry)

    rcode, result = await gateway.try_resolve(key, "TXT")
    record = select_spf_record(result.data) if rcode == "NOERROR" and result is not None else None
    if record is None:
        state.warn(f"{term} has no SPF record ({rcode})")
        return [], None

    resolved, all_term = await _expand_record(key, record, gateway, state, depth + 1)
    entry["resolved"] = resolved
    return resolved, all_term


def _dedupe(terms: Iterable[str]) -> List[str]:
    seen: Set[str] = set()
    out: List[str] = []
    for t in terms:
        k = t.lower()
        if k in seen:
            continue
        seen.add(k)
        out.append(t)
    return out


async def flatten_spf(domain: str, gateway: ResolverGateway) -> Dict[str, Any]:
    """Rewrite the SPF record of ``domain`` into literal address terms."""
    key = normalize_name(domain)
    rcode, result = await gateway.try_resolve(key, "TXT")
    if rcode != "NOERROR" or result is None:
        return {"domain": key, "error": f"SPF flatten failed: no TXT records ({rcode})"}
    original = select_spf_record(result.data)
    if original is None:
        return {"domain": key, "error": f"SPF flatten failed: {NO_RECORD_MESSAGE}"}

    state = _FlattenState(max_lookups=gateway.config.spf_max_lookups, visited={key})
    terms, all_term = await _expand_record(key, original, gateway, state, depth=0)
    mechanisms = _dedupe(terms)
    flattened = " ".join(["v=spf1"] + mechanisms + [all_term or "~all"])

    warnings = list(state.warnings)
    if state.lookups > 10:
        warnings.insert(0, f"DNS lookup limit exceeded ({state.lookups} lookups, RFC limit: 10)")
    if len(flattened) > 450:
        warnings.append("Flattened record exceeds 450 characters and may not fit in a single DNS response")
    elif len(flattened) > 255:
        warnings.append("Flattened record exceeds 255 characters and must be split into multiple strings")

    return {
        "domain": key,
        "original": original,
        "expansions": state.expansions,
        "flattened": flattened,
        "stats": {
            "dnsLookups": state.lookups,
            "ipv4Count": sum(1 for m in mechanisms if m.lstrip("+-~?").lower().startswith("ip4:")),
            "ipv6Count": sum(1 for m in mechanisms if m.lstrip("+-~?").lower().startswith("ip6:")),
            "includeDepth": state.max_depth,
            "recordLength": len(flattened),
            "mechanisms": len(mechanisms),
        },
        "warnings": warnings,
    }
