import asyncio
import sys
import json
import argparse
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from dotenv import load_dotenv

# Import our modules
from dns_module.config import DiagnosticsConfig
from dns_module.dns_lookup import ResolverGateway, ResolverOptions
from dns_module.dns_utils import clean_domain, clean_ip, create_reverse_zone
from dns_module.errors import DiagnosticsError
from dns_module.logger import configure_logging, get_child_logger
from checks_module.axfr import AxfrProber
from checks_module.caa import find_effective_caa
from checks_module.dmarc import check_dmarc
from checks_module.dnssec import check_ad_flag, check_dnssec_chain
from checks_module.nameservers import check_glue, check_ns_soa
from checks_module.propagation import check_propagation
from checks_module.soa import analyze_soa_serial
from checks_module.spf import evaluate_spf, flatten_spf
from checks_module.trace import trace_domain

load_dotenv()

log = get_child_logger("main")


async def _lookup(target: str, args: argparse.Namespace, gw: ResolverGateway) -> Dict[str, Any]:
    result = await gw.resolve(clean_domain(target, "name"), args.type, _options(args))
    return result.to_dict()


async def _reverse(target: str, args: argparse.Namespace, gw: ResolverGateway) -> Dict[str, Any]:
    reverse_name = create_reverse_zone(clean_ip(target))
    result = await gw.resolve(reverse_name, "PTR", _options(args))
    return {**result.to_dict(), "reverseName": reverse_name}


async def _axfr(target: str, args: argparse.Namespace, gw: ResolverGateway) -> Dict[str, Any]:
    prober = AxfrProber(gw.config, gw)
    return await prober.probe(target, args.nameserver)


CHECKS: Dict[str, Callable[[str, argparse.Namespace, ResolverGateway], Awaitable[Dict[str, Any]]]] = {
    "lookup": _lookup,
    "reverse-lookup": _reverse,
    "propagation": lambda t, a, gw: check_propagation(clean_domain(t, "name"), a.type, gw),
    "spf-evaluator": lambda t, a, gw: evaluate_spf(clean_domain(t), gw),
    "spf-flatten": lambda t, a, gw: flatten_spf(clean_domain(t), gw),
    "dmarc-check": lambda t, a, gw: check_dmarc(clean_domain(t), gw),
    "caa-effective": lambda t, a, gw: find_effective_caa(clean_domain(t, "name"), gw),
    "ns-soa-check": lambda t, a, gw: check_ns_soa(clean_domain(t), gw),
    "glue-check": lambda t, a, gw: check_glue(clean_domain(t, "zone"), gw),
    "dnssec-adflag": lambda t, a, gw: check_ad_flag(clean_domain(t, "name"), a.type, gw, _options(a)),
    "dnssec-chain": lambda t, a, gw: check_dnssec_chain(clean_domain(t), gw),
    "soa-serial": lambda t, a, gw: analyze_soa_serial(clean_domain(t), gw, _options(a)),
    "trace": lambda t, a, gw: trace_domain(clean_domain(t), gw),
    "axfr": _axfr,
}


def _options(args: argparse.Namespace) -> Optional[ResolverOptions]:
    if not (args.provider or args.server or args.timeout_ms):
        return None
    return ResolverOptions(
        provider=args.provider,
        custom_server=args.server,
        prefer_doh=not args.server,
        timeout_ms=args.timeout_ms,
    )


async def run_check(check: str, target: str, args: argparse.Namespace) -> Dict[str, Any]:
    """Run one diagnostic and attach timing metadata."""
    log.info(f"Running {check} for {target}")
    t0 = time.time()
    gateway = ResolverGateway(DiagnosticsConfig.from_env())
    try:
        result = await CHECKS[check](target, args, gateway)
    except DiagnosticsError as e:
        log.warning(f"{check} failed for {target}: {e.message}")
        result = {**e.to_dict(), "status": e.status_code}
    result["_meta"] = {"check": check, "total_ms": round((time.time() - t0) * 1000, 2)}
    return result


async def main():
    parser = argparse.ArgumentParser(description="DNS diagnostics runner")
    parser.add_argument("check", choices=sorted(CHECKS), help="Diagnostic to run")
    parser.add_argument("target", nargs="?", help="Domain, name, zone or IP to check")
    parser.add_argument("--type", default="A", help="Record type for lookup/propagation/dnssec-adflag")
    parser.add_argument("--provider", choices=["cloudflare", "google", "quad9", "opendns"], help="DoH provider")
    parser.add_argument("--server", help="Custom resolver IP (native DNS, subject to the allow-list)")
    parser.add_argument("--timeout-ms", type=int, default=None, help="Per-query timeout in milliseconds")
    parser.add_argument("--nameserver", help="Single nameserver to probe (axfr only)")
    parser.add_argument("--pretty", action="store_true", help="Pretty print JSON output")
    args = parser.parse_args()

    if not args.target:
        print("Error: target argument is required.")
        sys.exit(1)

    configure_logging()
    result = await run_check(args.check, args.target, args)

    if args.pretty:
        print(json.dumps(result, indent=2, default=str))
    else:
        print(json.dumps(result, default=str))

    if "error" in result and "status" in result:
        sys.exit(2)


def cli():
    asyncio.run(main())


if __name__ == "__main__":
    cli()
