"""
Resolver gateway: one record query through DNS-over-HTTPS with native fallback.

This module provides:
- ResolverOptions: per-request provider / custom server / timeout selection
- ResolverGateway.resolve(): DoH (selected provider) -> Cloudflare DoH -> native
  resolver at the provider's well-known IP, collecting a warning per fallback
- ResolverGateway.try_resolve(): the same query, returning an explicit
  (rcode, result) pair for call sites where a failure is expected and ignored
- ResolverGateway.query_doh() / query_dnssec(): raw DoH access for AD-flag and
  DNSSEC record retrieval (DO bit set)

There is no cache and no state besides the injected configuration: every call
is an isolated network round trip.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
import dns.asyncresolver
import dns.exception
import dns.resolver

from .config import DiagnosticsConfig
from .dns_records import (
    DohResponse,
    ResolutionResult,
    normalize_type,
    parse_doh_payload,
    rcode_text,
    shape_doh_answers,
    shape_native_answers,
    type_id,
)
from .errors import InputValidationError, ResolutionError
from .logger import get_child_logger
from .security import validate_custom_dns_server

log = get_child_logger("dns_lookup")


@dataclass(frozen=True)
class ResolverOptions:
    """How a single query should be routed."""
    provider: Optional[str] = None
    custom_server: Optional[str] = None
    prefer_doh: bool = True
    timeout_ms: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ResolverOptions":
        """Accepts both the documented names and the legacy wire names (doh / server)."""
        if not data:
            return cls()
        timeout = data.get("timeoutMs")
        return cls(
            provider=data.get("provider") or data.get("doh"),
            custom_server=data.get("customServer") or data.get("server"),
            prefer_doh=bool(data.get("preferDoH", True)),
            timeout_ms=int(timeout) if timeout is not None else None,
        )


def _label(provider: str) -> str:
    return provider[:1].upper() + provider[1:]


class ResolverGateway:
    """
    Single entry point for record queries. Collaborators (checks, API) only
    ever talk to DNS through an instance of this class.
    """

    def __init__(self, config: Optional[DiagnosticsConfig] = None):
        self.config = config or DiagnosticsConfig.from_env()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def resolve(
        self,
        name: str,
        rtype: str = "A",
        options: Optional[ResolverOptions] = None,
    ) -> ResolutionResult:
        """
        Resolve ``name``/``rtype``. Negative answers come back with
        ``no_records=True``; exhausted transports raise ResolutionError.
        """
        opts = options or ResolverOptions()
        rtype = normalize_type(rtype)
        provider = self._provider(opts.provider)
        timeout_ms = opts.timeout_ms or self.config.doh_timeout_ms

        if opts.prefer_doh or not opts.custom_server:
            return await self._resolve_with_fallback(name, rtype, provider, timeout_ms, opts)

        server = validate_custom_dns_server(opts.custom_server, self.config)
        return await self._native_lookup(name, rtype, server, timeout_ms)

    async def try_resolve(
        self,
        name: str,
        rtype: str = "A",
        options: Optional[ResolverOptions] = None,
    ) -> Tuple[str, Optional[ResolutionResult]]:
        """
        Like resolve(), but transport failures come back as an rcode instead of
        an exception: ("NOERROR", result) | ("NODATA", result) | (reason, None).
        """
        try:
            result = await self.resolve(name, rtype, options)
        except ResolutionError as exc:
            log.debug("lookup {} {} failed: {}", name, rtype, exc.message)
            return exc.reason, None
        if result.no_records:
            return "NODATA", result
        return "NOERROR", result

    async def query_doh(
        self,
        name: str,
        rtype: str,
        provider: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        dnssec: bool = False,
    ) -> DohResponse:
        """Raw DoH response from one provider, no fallback."""
        provider = self._provider(provider)
        endpoint = self.config.endpoint_for(provider)
        payload = await self._doh_fetch(
            endpoint,
            name,
            type_id(rtype, allow_dnssec=True),
            timeout_ms or self.config.doh_timeout_ms,
            dnssec=dnssec,
        )
        return parse_doh_payload(payload)

    async def query_dnssec(self, name: str, rtype: str) -> DohResponse:
        """DNSSEC-aware query (DO bit) against Cloudflare, then Google."""
        last_error: Optional[ResolutionError] = None
        for provider in ("cloudflare", "google"):
            try:
                response = await self.query_doh(name, rtype, provider=provider, dnssec=True)
            except ResolutionError as exc:
                log.warning("DNSSEC query {} {} via {} failed: {}", name, rtype, provider, exc.message)
                last_error = exc
                continue
            if response.status in (0, 3):
                return response
            last_error = ResolutionError(
                ResolutionError.SERVER_FAILURE,
                f"DoH query returned {rcode_text(response.status)}",
            )
        assert last_error is not None
        raise last_error

    # ------------------------------------------------------------------
    # Fallback chain
    # ------------------------------------------------------------------
    async def _resolve_with_fallback(
        self,
        name: str,
        rtype: str,
        provider: str,
        timeout_ms: int,
        opts: ResolverOptions,
    ) -> ResolutionResult:
        original = f"Custom DNS ({opts.custom_server})" if opts.custom_server else f"{_label(provider)} DoH"
        warnings: List[str] = []

        try:
            return await self._resolve_doh(provider, name, rtype, timeout_ms)
        except ResolutionError as exc:
            log.warning("DoH query failed for {}, falling back: {}", provider, exc.message)

        if provider != "cloudflare":
            try:
                result = await self._resolve_doh("cloudflare", name, rtype, timeout_ms)
                return result.with_warnings([f"{original} failed, fell back to Cloudflare DoH which succeeded."])
            except ResolutionError as exc:
                log.warning("Cloudflare DoH also failed, falling back to native DNS: {}", exc.message)

        fallback_server = self.config.server_for(provider)
        warnings.append(f"{original} failed, fell back to Native DNS ({fallback_server}).")
        native_timeout = min(timeout_ms, self.config.native_timeout_ms)
        result = await self._native_lookup(name, rtype, fallback_server, native_timeout)
        return result.with_warnings(warnings)

    async def _resolve_doh(self, provider: str, name: str, rtype: str, timeout_ms: int) -> ResolutionResult:
        endpoint = self.config.endpoint_for(provider)
        payload = await self._doh_fetch(endpoint, name, type_id(rtype), timeout_ms)
        response = parse_doh_payload(payload)

        if response.status == 3:
            return ResolutionResult(name=name, rtype=rtype, no_records=True, status=3, source=f"doh:{provider}")
        if response.status != 0:
            raise ResolutionError(
                ResolutionError.SERVER_FAILURE,
                f"DoH query returned {rcode_text(response.status)}",
                {"provider": provider},
            )

        records = shape_doh_answers(rtype, response)
        return ResolutionResult(
            name=name,
            rtype=rtype,
            records=records,
            no_records=not records,
            status=response.status,
            authenticated=response.authenticated,
            source=f"doh:{provider}",
        )

    # ------------------------------------------------------------------
    # Transports
    # ------------------------------------------------------------------
    async def _doh_fetch(
        self,
        endpoint: str,
        name: str,
        qtype: int,
        timeout_ms: int,
        dnssec: bool = False,
    ) -> Any:
        params = {"name": name, "type": str(qtype)}
        if dnssec:
            params["do"] = "1"
        timeout = aiohttp.ClientTimeout(total=timeout_ms / 1000.0)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as s:
                async with s.get(endpoint, params=params, headers={"Accept": "application/dns-json"}) as r:
                    if r.status != 200:
                        raise ResolutionError(
                            ResolutionError.SERVER_FAILURE,
                            f"DoH query failed: {r.status}",
                            {"endpoint": endpoint},
                        )
                    return await r.json(content_type=None)
        except asyncio.TimeoutError:
            raise ResolutionError(ResolutionError.TIMEOUT, f"DoH query timed out after {timeout_ms}ms")
        except ValueError as exc:
            # json decode failure; handed to the strict parser as a non-object
            log.debug("DoH body from {} is not JSON: {}", endpoint, exc)
            return None
        except aiohttp.ClientError as exc:
            raise ResolutionError(ResolutionError.SERVER_FAILURE, f"DoH query failed: {exc}")

    async def _native_lookup(self, name: str, rtype: str, server: str, timeout_ms: int) -> ResolutionResult:
        seconds = timeout_ms / 1000.0
        resolver = dns.asyncresolver.Resolver(configure=False)
        try:
            resolver.nameservers = [server]
        except ValueError:
            raise ResolutionError(ResolutionError.INVALID_SERVER, f"Invalid DNS server: {server}")
        resolver.timeout = seconds
        resolver.lifetime = seconds

        try:
            answer = await asyncio.wait_for(resolver.resolve(name, rtype), timeout=seconds)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return ResolutionResult(name=name, rtype=rtype, no_records=True, source=f"native:{server}")
        except (dns.exception.Timeout, asyncio.TimeoutError):
            raise ResolutionError(ResolutionError.TIMEOUT, f"DNS query timed out after {timeout_ms}ms")
        except dns.resolver.NoNameservers as exc:
            raise ResolutionError(ResolutionError.SERVER_FAILURE, f"DNS lookup failed: {exc}")
        except dns.exception.DNSException as exc:
            raise ResolutionError(ResolutionError.SERVER_FAILURE, f"DNS lookup failed: {exc}")

        ttl = int(answer.rrset.ttl) if answer.rrset is not None else 0
        records = shape_native_answers(rtype, answer, ttl)
        return ResolutionResult(
            name=name,
            rtype=rtype,
            records=records,
            no_records=not records,
            source=f"native:{server}",
        )

    def _provider(self, provider: Optional[str]) -> str:
        chosen = (provider or self.config.default_provider).strip().lower()
        if chosen not in self.config.doh_endpoints:
            raise InputValidationError(
                f"Unknown DoH provider: {provider}",
                {"providers": sorted(self.config.doh_endpoints)},
            )
        return chosen
