"""
checks_module/caa.py

RFC 8659 effective CAA policy search: walk from the queried name towards the
TLD and collect every zone that publishes CAA records.
"""
from __future__ import annotations

from typing import Any, Dict, List

from dns_module.dns_lookup import ResolverGateway
from dns_module.dns_utils import normalize_name, zone_suffixes
from dns_module.logger import get_child_logger

log = get_child_logger("caa")


async def find_effective_caa(name: str, gateway: ResolverGateway) -> Dict[str, Any]:
    name = normalize_name(name)
    chain: List[Dict[str, Any]] = []

    for zone in zone_suffixes(name):
        rcode, result = await gateway.try_resolve(zone, "CAA")
        if rcode != "NOERROR" or result is None:
            # no CAA (or a failed lookup) at this label: keep climbing
            log.debug("CAA at {}: {}", zone, rcode)
            continue
        chain.append({"domain": zone, "records": result.data})

    return {"name": name, "chain": chain, "effective": chain[0] if chain else None}
