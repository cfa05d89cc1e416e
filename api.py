from fastapi import FastAPI, HTTPException, Security, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from starlette.middleware.cors import CORSMiddleware
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, RootModel
from typing import Annotated, Any, Awaitable, Callable, Dict, Literal, Optional, Union
import os

# Rate Limiting
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

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


def _rate_limit() -> str:
    return os.getenv("RATE_LIMIT", "60/minute")


# Setup Limiter (using X-Forwarded-For if available via ProxyHeaders)
limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").strip().lower() not in ("0", "false", "no", "off"),
)
app = FastAPI(title="DNS Diagnostics API")

# Add Rate Limit Exception Handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS (Allow browser access if needed)
origins = os.getenv("CORS_ORIGINS", "*").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

log = get_child_logger("api")

# Global instances, created lazily so tests can override the dependencies
_config: Optional[DiagnosticsConfig] = None
_gateway: Optional[ResolverGateway] = None
_prober: Optional[AxfrProber] = None

# Security Scheme
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def check_api_key(api_key: str = Security(api_key_header)):
    """
    Validates API Key if 'API_KEY' env var is set.
    If 'API_KEY' is NOT set, allows open access (with warning logs).
    """
    expected_key = os.getenv("API_KEY")
    if expected_key:
        if api_key != expected_key:
            raise HTTPException(status_code=403, detail="Invalid API Key")
    return api_key


def get_config() -> DiagnosticsConfig:
    global _config
    if _config is None:
        _config = DiagnosticsConfig.from_env()
    return _config


def get_gateway(config: DiagnosticsConfig = Depends(get_config)) -> ResolverGateway:
    global _gateway
    if _gateway is None:
        _gateway = ResolverGateway(config)
    return _gateway


def get_axfr_prober(
    config: DiagnosticsConfig = Depends(get_config),
    gateway: ResolverGateway = Depends(get_gateway),
) -> AxfrProber:
    global _prober
    if _prober is None:
        _prober = AxfrProber(config, gateway)
    return _prober


@app.on_event("startup")
async def startup_event():
    configure_logging()
    log.info("Starting up DNS diagnostics API...")

    if not os.getenv("API_KEY"):
        log.warning("No API_KEY configured! API is accessible without authentication (Rate Limits apply).")

    config = get_config()
    log.info(
        "Default provider={} custom DNS allowed={} private IPs blocked={}",
        config.default_provider, config.allow_custom_dns, config.block_private_dns_ips,
    )


# --------------------------------------------------------------------
# Error handling
# --------------------------------------------------------------------
@app.exception_handler(DiagnosticsError)
async def diagnostics_error_handler(request: Request, exc: DiagnosticsError):
    if exc.status_code >= 500:
        log.error("{} {} failed: {}", request.method, request.url.path, exc.message)
    else:
        log.info("{} {} rejected ({}): {}", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(
        status_code=400,
        content={"error": "invalidRequest", "message": "; ".join(problems) or "Invalid request"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on {} {}", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "internalError", "message": f"DNS operation failed: {exc}"},
    )


# --------------------------------------------------------------------
# Request models
# --------------------------------------------------------------------
class ResolverOpts(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    provider: Optional[Literal["cloudflare", "google", "quad9", "opendns"]] = Field(
        None, validation_alias=AliasChoices("provider", "doh")
    )
    custom_server: Optional[str] = Field(None, validation_alias=AliasChoices("customServer", "server"))
    prefer_doh: bool = Field(True, validation_alias=AliasChoices("preferDoH", "prefer_doh"))
    timeout_ms: Optional[int] = Field(None, ge=100, le=30000, validation_alias=AliasChoices("timeoutMs", "timeout_ms"))

    def to_options(self) -> ResolverOptions:
        return ResolverOptions(
            provider=self.provider,
            custom_server=self.custom_server,
            prefer_doh=self.prefer_doh,
            timeout_ms=self.timeout_ms,
        )


def _opts(opts: Optional[ResolverOpts]) -> Optional[ResolverOptions]:
    return opts.to_options() if opts is not None else None


class LookupReq(BaseModel):
    action: Literal["lookup"]
    name: str
    type: str = "A"
    resolverOpts: Optional[ResolverOpts] = None


class ReverseLookupReq(BaseModel):
    action: Literal["reverse-lookup"]
    ip: str
    resolverOpts: Optional[ResolverOpts] = None


class PropagationReq(BaseModel):
    action: Literal["propagation"]
    name: str
    type: str = "A"


class SpfEvaluatorReq(BaseModel):
    action: Literal["spf-evaluator"]
    domain: str


class DmarcCheckReq(BaseModel):
    action: Literal["dmarc-check"]
    domain: str


class CaaEffectiveReq(BaseModel):
    action: Literal["caa-effective"]
    name: str


class NsSoaCheckReq(BaseModel):
    action: Literal["ns-soa-check"]
    domain: str


class DnssecAdFlagReq(BaseModel):
    action: Literal["dnssec-adflag"]
    name: str
    type: str = "A"
    resolverOpts: Optional[ResolverOpts] = None


class SoaSerialReq(BaseModel):
    action: Literal["soa-serial"]
    domain: str
    resolverOpts: Optional[ResolverOpts] = None


class TraceReq(BaseModel):
    action: Literal["trace"]
    domain: str


class GlueCheckReq(BaseModel):
    action: Literal["glue-check"]
    zone: str


class SpfFlattenReq(BaseModel):
    action: Literal["spf-flatten"]
    domain: str


DnsAction = Annotated[
    Union[
        LookupReq,
        ReverseLookupReq,
        PropagationReq,
        SpfEvaluatorReq,
        DmarcCheckReq,
        CaaEffectiveReq,
        NsSoaCheckReq,
        DnssecAdFlagReq,
        SoaSerialReq,
        TraceReq,
        GlueCheckReq,
        SpfFlattenReq,
    ],
    Field(discriminator="action"),
]


class DnsRequest(RootModel[DnsAction]):
    pass


class AxfrReq(BaseModel):
    domain: str
    nameserver: Optional[str] = None


class DnssecChainReq(BaseModel):
    domain: str


# --------------------------------------------------------------------
# Action handlers
# --------------------------------------------------------------------
async def _lookup(req: LookupReq, gw: ResolverGateway) -> JSONResponse:
    name = clean_domain(req.name, "name")
    result = await gw.resolve(name, req.type, _opts(req.resolverOpts))
    return JSONResponse(result.to_dict(), status_code=404 if result.no_records else 200)


async def _reverse_lookup(req: ReverseLookupReq, gw: ResolverGateway) -> JSONResponse:
    reverse_name = create_reverse_zone(clean_ip(req.ip))
    result = await gw.resolve(reverse_name, "PTR", _opts(req.resolverOpts))
    body = {**result.to_dict(), "reverseName": reverse_name}
    return JSONResponse(body, status_code=404 if result.no_records else 200)


async def _propagation(req: PropagationReq, gw: ResolverGateway) -> Dict[str, Any]:
    return await check_propagation(clean_domain(req.name, "name"), req.type, gw)


async def _spf_evaluator(req: SpfEvaluatorReq, gw: ResolverGateway) -> Dict[str, Any]:
    return await evaluate_spf(clean_domain(req.domain), gw)


async def _dmarc_check(req: DmarcCheckReq, gw: ResolverGateway) -> Dict[str, Any]:
    return await check_dmarc(clean_domain(req.domain), gw)


async def _caa_effective(req: CaaEffectiveReq, gw: ResolverGateway) -> Dict[str, Any]:
    return await find_effective_caa(clean_domain(req.name, "name"), gw)


async def _ns_soa_check(req: NsSoaCheckReq, gw: ResolverGateway) -> Dict[str, Any]:
    return await check_ns_soa(clean_domain(req.domain), gw)


async def _dnssec_adflag(req: DnssecAdFlagReq, gw: ResolverGateway) -> Dict[str, Any]:
    return await check_ad_flag(clean_domain(req.name, "name"), req.type, gw, _opts(req.resolverOpts))


async def _soa_serial(req: SoaSerialReq, gw: ResolverGateway) -> Dict[str, Any]:
    return await analyze_soa_serial(clean_domain(req.domain), gw, _opts(req.resolverOpts))


async def _trace(req: TraceReq, gw: ResolverGateway) -> Dict[str, Any]:
    return await trace_domain(clean_domain(req.domain), gw)


async def _glue_check(req: GlueCheckReq, gw: ResolverGateway) -> Dict[str, Any]:
    return await check_glue(clean_domain(req.zone, "zone"), gw)


async def _spf_flatten(req: SpfFlattenReq, gw: ResolverGateway) -> Dict[str, Any]:
    return await flatten_spf(clean_domain(req.domain), gw)


ACTION_HANDLERS: Dict[type, Callable[[Any, ResolverGateway], Awaitable[Any]]] = {
    LookupReq: _lookup,
    ReverseLookupReq: _reverse_lookup,
    PropagationReq: _propagation,
    SpfEvaluatorReq: _spf_evaluator,
    DmarcCheckReq: _dmarc_check,
    CaaEffectiveReq: _caa_effective,
    NsSoaCheckReq: _ns_soa_check,
    DnssecAdFlagReq: _dnssec_adflag,
    SoaSerialReq: _soa_serial,
    TraceReq: _trace,
    GlueCheckReq: _glue_check,
    SpfFlattenReq: _spf_flatten,
}


# --------------------------------------------------------------------
# Routes
# --------------------------------------------------------------------
@app.get("/health")
@limiter.exempt
def health_check():
    return {"status": "ok"}


@app.post("/api/diagnostics/dns", dependencies=[Depends(check_api_key)])
@limiter.limit(_rate_limit)
async def dns_diagnostics(
    request: Request,
    body: DnsRequest,
    gateway: ResolverGateway = Depends(get_gateway),
):
    req = body.root
    log.info("dns action={}", req.action)
    handler = ACTION_HANDLERS[type(req)]
    return await handler(req, gateway)


@app.post("/api/diagnostics/axfr", dependencies=[Depends(check_api_key)])
@limiter.limit(_rate_limit)
async def axfr_probe(
    request: Request,
    body: AxfrReq,
    prober: AxfrProber = Depends(get_axfr_prober),
):
    log.info("axfr probe domain={} nameserver={}", body.domain, body.nameserver)
    return await prober.probe(body.domain, body.nameserver)


@app.post("/api/diagnostics/dnssec-validation", dependencies=[Depends(check_api_key)])
@limiter.limit(_rate_limit)
async def dnssec_validation(
    request: Request,
    body: DnssecChainReq,
    gateway: ResolverGateway = Depends(get_gateway),
):
    return await check_dnssec_chain(clean_domain(body.domain), gateway)
