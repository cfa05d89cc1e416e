"""
checks_module/dnssec.py

DNSSEC chain-of-trust walk and AD-flag check.

validate_chain() fetches DNSKEY, RRSIG and DS for every zone from the root to
the queried name and decides each link on its own evidence:

- root: validated when any DNSKEY is published (trust anchor)
- other zones: at least one DS, and a KSK whose RFC 4034 key tag and
  algorithm match a DS record (algorithm-only when the key tag cannot be
  computed from the published RDATA)

RRSIG validity windows are checked against the current time and reported per
link; signatures are not cryptographically verified.
"""
from __future__ import annotations

import asyncio
import datetime
from typing import Any, Dict, List, Optional, Sequence

import dns.dnssec
import dns.exception
import dns.rdata
import dns.rdataclass
import dns.rdatatype

from dns_module.dns_lookup import ResolverGateway, ResolverOptions
from dns_module.dns_records import DohAnswer, DohResponse, normalize_type, rcode_text
from dns_module.dns_utils import normalize_name, zone_suffixes
from dns_module.errors import DiagnosticsError
from dns_module.logger import get_child_logger

log = get_child_logger("dnssec")

# RFC 8624 mnemonics
ALGORITHMS: Dict[str, int] = {
    "RSAMD5": 1,
    "DH": 2,
    "DSA": 3,
    "RSASHA1": 5,
    "DSA-NSEC3-SHA1": 6,
    "RSASHA1-NSEC3-SHA1": 7,
    "RSASHA256": 8,
    "RSASHA512": 10,
    "ECC-GOST": 12,
    "ECDSAP256SHA256": 13,
    "ECDSAP384SHA384": 14,
    "ED25519": 15,
    "ED448": 16,
}

FLAG_ZONE = 0x0100
FLAG_SEP = 0x0001


def parse_algorithm(value: str) -> int:
    v = value.strip()
    if v.isdigit():
        return int(v)
    return ALGORITHMS.get(v.upper(), 0)


def _int(value: str, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def compute_key_tag(data: str) -> Optional[int]:
    """RFC 4034 Appendix B key tag of a DNSKEY in presentation format."""
    try:
        rd = dns.rdata.from_text(dns.rdataclass.IN, dns.rdatatype.DNSKEY, data)
        return int(dns.dnssec.key_id(rd))
    except (dns.exception.DNSException, ValueError) as exc:
        log.debug("key tag not computable for {!r}: {}", data[:40], exc)
        return None


def parse_dnskey(data: str) -> Optional[Dict[str, Any]]:
    parts = data.split()
    if len(parts) < 4:
        return None
    flags = _int(parts[0])
    return {
        "flags": flags,
        "protocol": _int(parts[1]),
        "algorithm": parse_algorithm(parts[2]),
        "publicKey": "".join(parts[3:]),
        "keyTag": compute_key_tag(data),
        "isKSK": bool(flags & FLAG_SEP),
        "isZSK": bool(flags & FLAG_ZONE) and not flags & FLAG_SEP,
        "matched": False,
    }


def parse_ds(data: str) -> Optional[Dict[str, Any]]:
    parts = data.split()
    if len(parts) < 4:
        return None
    return {
        "keyTag": _int(parts[0]),
        "algorithm": parse_algorithm(parts[1]),
        "digestType": _int(parts[2]),
        "digest": "".join(parts[3:]).upper(),
        "matched": False,
    }


def parse_sig_time(value: str) -> Optional[datetime.datetime]:
    """RRSIG timestamps arrive as YYYYMMDDHHMMSS or as epoch seconds."""
    v = value.strip()
    if not v.isdigit():
        return None
    try:
        if len(v) == 14:
            return datetime.datetime.strptime(v, "%Y%m%d%H%M%S").replace(tzinfo=datetime.timezone.utc)
        return datetime.datetime.fromtimestamp(int(v), tz=datetime.timezone.utc)
    except (ValueError, OverflowError, OSError):
        return None


def _iso(dt: Optional[datetime.datetime]) -> Optional[str]:
    return dt.isoformat().replace("+00:00", "Z") if dt else None


def parse_rrsig(data: str) -> Optional[Dict[str, Any]]:
    parts = data.split()
    if len(parts) < 9:
        return None
    covered = parts[0].upper()
    if covered.isdigit():
        covered = dns.rdatatype.to_text(int(covered))
    expiration = parse_sig_time(parts[4])
    inception = parse_sig_time(parts[5])
    return {
        "typeCovered": covered,
        "algorithm": parse_algorithm(parts[1]),
        "labels": _int(parts[2]),
        "originalTTL": _int(parts[3]),
        "expiration": _iso(expiration) or parts[4],
        "inception": _iso(inception) or parts[5],
        "keyTag": _int(parts[6]),
        "signerName": parts[7],
        "signature": "".join(parts[8:]),
        "valid": True,
        "_window": (inception, expiration),
    }


def _answers(response: Any, type_id: int) -> List[DohAnswer]:
    if isinstance(response, DohResponse):
        return [a for a in response.answer if a.type == type_id]
    return []


def _query_error(label: str, response: Any) -> Optional[str]:
    if isinstance(response, DiagnosticsError):
        return f"{label} query failed: {response.message}"
    if isinstance(response, BaseException):
        return f"{label} query failed: {response}"
    return None


def build_zone_list(domain: str) -> List[str]:
    """Root first: ['.', 'com', 'example.com', 'www.example.com']."""
    return ["."] + list(reversed(zone_suffixes(domain)))


def evaluate_link(
    zone: str,
    level: int,
    dnskey_resp: Any,
    rrsig_resp: Any,
    ds_resp: Any,
    now: Optional[datetime.datetime] = None,
) -> Dict[str, Any]:
    """
    Decide one link from its own query results. Responses may be a
    DohResponse, an exception (query failed) or None (not queried).
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    is_root = zone == "."
    errors: List[str] = []

    for label, resp in (("DNSKEY", dnskey_resp), ("RRSIG", rrsig_resp), ("DS", ds_resp)):
        err = _query_error(label, resp)
        if err:
            errors.append(err)

    dnskeys = [k for k in (parse_dnskey(a.data) for a in _answers(dnskey_resp, 48)) if k]
    ds_records = [d for d in (parse_ds(a.data) for a in _answers(ds_resp, 43)) if d] if not is_root else []

    # signatures over the DNSKEY RRset, from the RRSIG query and the DO-bit DNSKEY answer
    seen = set()
    rrsigs: List[Dict[str, Any]] = []
    for a in _answers(rrsig_resp, 46) + _answers(dnskey_resp, 46):
        if a.data in seen:
            continue
        seen.add(a.data)
        sig = parse_rrsig(a.data)
        if sig and sig["typeCovered"] == "DNSKEY":
            rrsigs.append(sig)

    for sig in rrsigs:
        inception, expiration = sig.pop("_window")
        if expiration is None or inception is None:
            sig["valid"] = False
            errors.append("RRSIG has an unparseable validity window")
        elif now > expiration:
            sig["valid"] = False
            errors.append(f"RRSIG expired on {_iso(expiration)}")
        elif now < inception:
            sig["valid"] = False
            errors.append(f"RRSIG not yet valid until {_iso(inception)}")

    validated = False
    if not dnskeys:
        errors.append("No DNSKEY records found")
    elif is_root:
        validated = True
    elif not ds_records:
        errors.append("No DS records found")
    else:
        ksks = [k for k in dnskeys if k["isKSK"]]
        if not ksks:
            errors.append("No KSK (Key Signing Key) found")
        else:
            algorithm_only = False
            for ds in ds_records:
                for key in ksks:
                    if key["algorithm"] != ds["algorithm"]:
                        continue
                    if key["keyTag"] is None or key["keyTag"] == ds["keyTag"]:
                        key["matched"] = ds["matched"] = True
                        validated = True
                    else:
                        algorithm_only = True
            if not validated:
                if algorithm_only:
                    errors.append("No KSK key tag matches a DS record")
                else:
                    errors.append("No DNSKEY with algorithm matching DS records")

    return {
        "zoneName": zone,
        "level": level,
        "dsRecords": ds_records,
        "dnskeyRecords": dnskeys,
        "rrsigRecords": rrsigs,
        "validated": validated,
        "errors": errors,
    }


async def _fetch_zone(gateway: ResolverGateway, zone: str) -> Sequence[Any]:
    queries = [gateway.query_dnssec(zone, "DNSKEY"), gateway.query_dnssec(zone, "RRSIG")]
    if zone != ".":
        queries.append(gateway.query_dnssec(zone, "DS"))
    results = await asyncio.gather(*queries, return_exceptions=True)
    if zone == ".":
        results.append(None)
    return results


async def validate_chain(domain: str, gateway: ResolverGateway) -> List[Dict[str, Any]]:
    """Ordered chain of links, root first; length is label count + 1."""
    zones = build_zone_list(normalize_name(domain))
    fetched = await asyncio.gather(*(_fetch_zone(gateway, z) for z in zones))
    now = datetime.datetime.now(datetime.timezone.utc)
    chain = []
    for level, (zone, (dnskey, rrsig, ds)) in enumerate(zip(zones, fetched)):
        chain.append(evaluate_link(zone, level, dnskey, rrsig, ds, now=now))
    return chain


async def check_dnssec_chain(domain: str, gateway: ResolverGateway) -> Dict[str, Any]:
    domain = normalize_name(domain)
    chain = await validate_chain(domain, gateway)
    broken = [link for link in chain if link["zoneName"] != "." and not link["validated"]]
    log.info("DNSSEC chain for {}: {} links, {} broken", domain, len(chain), len(broken))
    return {
        "domain": domain,
        "valid": not broken,
        "chain": chain,
        "brokenLinks": broken,
        "summary": {
            "totalLinks": len(chain),
            "validatedLinks": sum(1 for link in chain if link["validated"]),
            "errors": [e for link in chain for e in link["errors"] if e],
        },
    }


# --------------------------------------------------------------------
# AD flag
# --------------------------------------------------------------------
def explain_ad_flag(authenticated: bool, rcode: int) -> str:
    if rcode != 0:
        return "Query failed - DNSSEC status cannot be determined"
    if authenticated:
        return "Authenticated Data (AD) bit is SET - Response is cryptographically verified by DNSSEC"
    return (
        "Authenticated Data (AD) bit is NOT SET - Response is not DNSSEC validated "
        "(unsigned, validation failed, or resolver does not validate)"
    )


async def check_ad_flag(
    name: str,
    rtype: str,
    gateway: ResolverGateway,
    options: Optional[ResolverOptions] = None,
) -> Dict[str, Any]:
    opts = options or ResolverOptions()
    rtype = normalize_type(rtype)
    provider = (opts.provider or gateway.config.default_provider).lower()
    try:
        resp = await gateway.query_doh(name, rtype, provider=provider, timeout_ms=opts.timeout_ms)
    except DiagnosticsError as exc:
        log.warning("AD flag check for {} {} via {} failed: {}", name, rtype, provider, exc.message)
        return {"error": exc.message, "name": name, "type": rtype, "resolver": provider}

    return {
        "name": name,
        "type": rtype,
        "resolver": provider,
        "authenticated": resp.authenticated,
        "checkingDisabled": resp.checking_disabled,
        "rcode": resp.status,
        "rcodeText": rcode_text(resp.status),
        "explanation": explain_ad_flag(resp.authenticated, resp.status),
        "records": [a.to_dict() for a in resp.answer],
        "authority": [a.to_dict() for a in resp.authority],
        "additional": [a.to_dict() for a in resp.additional],
    }
