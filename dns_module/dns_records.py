# /dns_diagnostics/dns_module/dns_records.py
"""
Record codec: type-name ↔ type-id mapping, the uniform ``{data, ttl}`` record
shape, and the strict boundary parse of DoH JSON payloads.

Both transports (DoH JSON and dnspython answers) are shaped per record type
into the same string form, so callers never see which path answered.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from .dns_utils import join_txt_strings
from .errors import ParseError, UnsupportedTypeError

# User-facing record types (lookup / propagation / checks)
RECORD_TYPES: Dict[str, int] = {
    "A": 1,
    "NS": 2,
    "CNAME": 5,
    "SOA": 6,
    "PTR": 12,
    "MX": 15,
    "TXT": 16,
    "AAAA": 28,
    "SRV": 33,
    "CAA": 257,
}

# DNSSEC types, only reachable through DoH with the DO bit set
DNSSEC_TYPES: Dict[str, int] = {
    "DS": 43,
    "RRSIG": 46,
    "DNSKEY": 48,
}

ALL_TYPES: Dict[str, int] = {**RECORD_TYPES, **DNSSEC_TYPES}
TYPE_NAMES: Dict[int, str] = {v: k for k, v in ALL_TYPES.items()}

RCODE_TEXT: Dict[int, str] = {
    0: "NOERROR - No error",
    1: "FORMERR - Format error",
    2: "SERVFAIL - Server failure",
    3: "NXDOMAIN - Non-existent domain",
    4: "NOTIMP - Not implemented",
    5: "REFUSED - Query refused",
    6: "YXDOMAIN - Name exists when it should not",
    7: "YXRRSET - RR set exists when it should not",
    8: "NXRRSET - RR set that should exist does not",
    9: "NOTAUTH - Server not authoritative",
}


def normalize_type(rtype: str, allow_dnssec: bool = False) -> str:
    name = (rtype or "").strip().upper()
    table = ALL_TYPES if allow_dnssec else RECORD_TYPES
    if name not in table:
        raise UnsupportedTypeError(rtype)
    return name


def type_id(rtype: str, allow_dnssec: bool = False) -> int:
    return ALL_TYPES[normalize_type(rtype, allow_dnssec)]


def rcode_text(rcode: int) -> str:
    return RCODE_TEXT.get(rcode, f"Unknown RCODE: {rcode}")


@dataclass(frozen=True)
class Record:
    data: str
    ttl: int

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "TTL": self.ttl}


@dataclass(frozen=True)
class ResolutionResult:
    """
    Outcome of one record query. Immutable once returned.

    ``no_records`` marks a definitive negative answer (NXDOMAIN / NODATA),
    which is not an error.
    """
    name: str
    rtype: str
    records: Tuple[Record, ...] = ()
    warnings: Tuple[str, ...] = ()
    no_records: bool = False
    status: int = 0
    authenticated: bool = False
    source: str = ""

    @property
    def data(self) -> List[str]:
        return [r.data for r in self.records]

    def with_warnings(self, warnings: List[str]) -> "ResolutionResult":
        return ResolutionResult(
            name=self.name,
            rtype=self.rtype,
            records=self.records,
            warnings=tuple(self.warnings) + tuple(warnings),
            no_records=self.no_records,
            status=self.status,
            authenticated=self.authenticated,
            source=self.source,
        )

    def to_dict(self) -> Dict[str, Any]:
        if self.no_records:
            return {
                "noRecords": True,
                "message": f"No {self.rtype} records found for {self.name}",
                "name": self.name,
                "type": self.rtype,
                "warnings": list(self.warnings),
            }
        return {
            "name": self.name,
            "type": self.rtype,
            "Status": self.status,
            "AD": self.authenticated,
            "Answer": [r.to_dict() for r in self.records],
            "warnings": list(self.warnings),
        }


@dataclass(frozen=True)
class DohAnswer:
    name: str
    type: int
    ttl: int
    data: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type, "TTL": self.ttl, "data": self.data}


@dataclass(frozen=True)
class DohResponse:
    status: int
    authenticated: bool = False
    checking_disabled: bool = False
    answer: Tuple[DohAnswer, ...] = ()
    authority: Tuple[DohAnswer, ...] = ()
    additional: Tuple[DohAnswer, ...] = ()
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    def of_type(self, rtype: str) -> List[DohAnswer]:
        tid = ALL_TYPES.get(rtype.upper())
        return [a for a in self.answer if a.type == tid]


# --------------------------------------------------------------------
# Strict DoH JSON boundary parse
# --------------------------------------------------------------------
def _parse_rr_list(payload: Dict[str, Any], key: str) -> Tuple[DohAnswer, ...]:
    value = payload.get(key)
    if value is None:
        return ()
    if not isinstance(value, list):
        raise ParseError(f"'{key}' is not a list")
    out: List[DohAnswer] = []
    for idx, rr in enumerate(value):
        if not isinstance(rr, dict):
            raise ParseError(f"{key}[{idx}] is not an object")
        rtype = rr.get("type")
        data = rr.get("data")
        ttl = rr.get("TTL", 0)
        if not isinstance(rtype, int) or isinstance(rtype, bool):
            raise ParseError(f"{key}[{idx}].type is not an integer")
        if not isinstance(data, str):
            raise ParseError(f"{key}[{idx}].data is not a string")
        if not isinstance(ttl, int) or isinstance(ttl, bool):
            raise ParseError(f"{key}[{idx}].TTL is not an integer")
        out.append(DohAnswer(name=str(rr.get("name", "")), type=rtype, ttl=max(0, ttl), data=data))
    return tuple(out)


def parse_doh_payload(payload: Any) -> DohResponse:
    """Normalize an application/dns-json body; raise ParseError on anything that does not conform."""
    if not isinstance(payload, dict):
        raise ParseError("body is not a JSON object")
    status = payload.get("Status")
    if not isinstance(status, int) or isinstance(status, bool):
        raise ParseError("'Status' missing or not an integer")
    return DohResponse(
        status=status,
        authenticated=bool(payload.get("AD", False)),
        checking_disabled=bool(payload.get("CD", False)),
        answer=_parse_rr_list(payload, "Answer"),
        authority=_parse_rr_list(payload, "Authority"),
        additional=_parse_rr_list(payload, "Additional"),
        raw=payload,
    )


# --------------------------------------------------------------------
# Per-type shaping of presentation-format data (DoH path)
# --------------------------------------------------------------------
def _strip_dot(value: str) -> str:
    return value.strip().rstrip(".") if value.strip() != "." else "."


def _shape_mx(data: str) -> str:
    parts = data.split()
    if len(parts) >= 2:
        return f"{parts[0]} {_strip_dot(parts[1])}"
    return data.strip()


def _shape_soa(data: str) -> str:
    parts = data.split()
    if len(parts) >= 7:
        return " ".join([_strip_dot(parts[0]), _strip_dot(parts[1])] + parts[2:7])
    return data.strip()


def _shape_srv(data: str) -> str:
    parts = data.split()
    if len(parts) >= 4:
        return " ".join(parts[:3] + [_strip_dot(parts[3])])
    return data.strip()


_DOH_SHAPERS: Dict[str, Callable[[str], str]] = {
    "A": str.strip,
    "AAAA": str.strip,
    "CNAME": _strip_dot,
    "NS": _strip_dot,
    "PTR": _strip_dot,
    "MX": _shape_mx,
    "TXT": join_txt_strings,
    "SOA": _shape_soa,
    "CAA": str.strip,
    "SRV": _shape_srv,
    "DS": str.strip,
    "RRSIG": str.strip,
    "DNSKEY": str.strip,
}


def shape_doh_answers(rtype: str, response: DohResponse) -> Tuple[Record, ...]:
    """Records of the requested type from a parsed DoH response, in upstream order."""
    shaper = _DOH_SHAPERS.get(rtype)
    if shaper is None:
        raise UnsupportedTypeError(rtype)
    return tuple(Record(data=shaper(a.data), ttl=a.ttl) for a in response.of_type(rtype))


# --------------------------------------------------------------------
# Per-type shaping of dnspython rdata (native path)
# --------------------------------------------------------------------
def _name(value: Any) -> str:
    return _strip_dot(str(value))


_NATIVE_SHAPERS: Dict[str, Callable[[Any], str]] = {
    "A": lambda rd: str(rd.address),
    "AAAA": lambda rd: str(rd.address),
    "CNAME": lambda rd: _name(rd.target),
    "NS": lambda rd: _name(rd.target),
    "PTR": lambda rd: _name(rd.target),
    "MX": lambda rd: f"{rd.preference} {_name(rd.exchange)}",
    "TXT": lambda rd: b"".join(rd.strings).decode("utf-8", errors="replace"),
    "SOA": lambda rd: (
        f"{_name(rd.mname)} {_name(rd.rname)} {rd.serial} {rd.refresh} {rd.retry} {rd.expire} {rd.minimum}"
    ),
    "CAA": lambda rd: f'{rd.flags} {rd.tag.decode("ascii", errors="replace")} "{rd.value.decode("utf-8", errors="replace")}"',
    "SRV": lambda rd: f"{rd.priority} {rd.weight} {rd.port} {_name(rd.target)}",
}


def shape_native_answers(rtype: str, rdatas: Any, ttl: int) -> Tuple[Record, ...]:
    shaper = _NATIVE_SHAPERS.get(rtype)
    if shaper is None:
        raise UnsupportedTypeError(rtype)
    return tuple(Record(data=shaper(rd), ttl=max(0, int(ttl))) for rd in rdatas)
