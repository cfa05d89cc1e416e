"""
checks_module/propagation.py

Ask every DoH provider for the same record concurrently and compare.
"""
from __future__ import annotations

import asyncio
from typing import Any, Dict, List

from dns_module.config import PROVIDERS
from dns_module.dns_lookup import ResolverGateway, ResolverOptions
from dns_module.dns_records import normalize_type
from dns_module.errors import DiagnosticsError
from dns_module.logger import get_child_logger

log = get_child_logger("propagation")


async def check_propagation(name: str, rtype: str, gateway: ResolverGateway) -> Dict[str, Any]:
    rtype = normalize_type(rtype)
    providers = list(PROVIDERS)
    outcomes = await asyncio.gather(
        *(gateway.resolve(name, rtype, ResolverOptions(provider=p)) for p in providers),
        return_exceptions=True,
    )

    results: List[Dict[str, Any]] = []
    answers = []
    for provider, outcome in zip(providers, outcomes):
        if isinstance(outcome, DiagnosticsError):
            log.warning("propagation {} {} via {} failed: {}", name, rtype, provider, outcome.message)
            results.append({"resolver": provider, "error": outcome.message})
        elif isinstance(outcome, BaseException):
            log.warning("propagation {} {} via {} failed: {!r}", name, rtype, provider, outcome)
            results.append({"resolver": provider, "error": str(outcome) or type(outcome).__name__})
        else:
            results.append({"resolver": provider, "result": outcome.to_dict()})
            answers.append(frozenset(r.lower() for r in outcome.data))

    return {
        "name": name,
        "type": rtype,
        "results": results,
        "consistent": len(set(answers)) <= 1,
    }
