"""
checks_module/axfr.py

Zone-transfer (AXFR) exposure probe.

For each nameserver of a domain the external transfer tool (``dig`` by
default) is invoked with an argument vector, never a shell string, under a
hard timeout and an output cap. The textual result is classified as
vulnerable (zone records returned) or secure (refused / reset / nothing).

When the tool is not installed every nameserver is reported with an explicit
"unavailable" error and the response is flagged ``limitedMode`` so callers
never mistake a missing tool for a secure server.
"""
from __future__ import annotations

import asyncio
import contextlib
import datetime
import re
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from dns_module.config import DiagnosticsConfig
from dns_module.dns_lookup import ResolverGateway
from dns_module.dns_utils import clean_domain, normalize_name
from dns_module.errors import InputValidationError, ResolutionError
from dns_module.logger import get_child_logger

log = get_child_logger("axfr")

MAX_RECORDS_DISPLAY = 50
UNAVAILABLE_ERROR = "AXFR testing unavailable in this environment"
LIMITED_MODE_REASON = (
    "Zone transfer testing requires the dig command, which is not installed in this environment. "
    "Install bind9-dnsutils (or set DIAG_AXFR_TOOL) for full functionality."
)

_RECORD_LINE = re.compile(r"^\S+\s+\d+\s+IN\s+\w+\s+")
_META_LINE = re.compile(r"^(DiG|global|Query|Transfer|connection|WARNING)")


@dataclass
class ToolRun:
    output: str
    returncode: Optional[int] = None
    timed_out: bool = False
    truncated: bool = False


ToolRunner = Callable[[Sequence[str], float, int], Awaitable[ToolRun]]


async def run_tool(argv: Sequence[str], timeout_s: float, max_bytes: int) -> ToolRun:
    """
    Run ``argv`` with stderr folded into stdout. Output beyond ``max_bytes`` is
    dropped and the process killed; past ``timeout_s`` the process is killed.
    Raises FileNotFoundError when the executable does not exist.
    """
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )
    chunks: List[bytes] = []
    state = {"total": 0, "truncated": False}

    async def _drain() -> None:
        assert proc.stdout is not None
        while True:
            chunk = await proc.stdout.read(65536)
            if not chunk:
                break
            room = max_bytes - state["total"]
            if len(chunk) > room:
                chunks.append(chunk[:room])
                state["total"] = max_bytes
                state["truncated"] = True
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                break
            chunks.append(chunk)
            state["total"] += len(chunk)
        await proc.wait()

    timed_out = False
    try:
        await asyncio.wait_for(_drain(), timeout=timeout_s)
    except asyncio.TimeoutError:
        timed_out = True
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()

    return ToolRun(
        output=b"".join(chunks).decode("utf-8", errors="replace"),
        returncode=proc.returncode,
        timed_out=timed_out,
        truncated=state["truncated"],
    )


def classify_output(output: str) -> Dict[str, Any]:
    """Map transfer-tool output onto {vulnerable, recordCount, records, error, note}."""
    verdict: Dict[str, Any] = {"vulnerable": False, "recordCount": None, "records": None, "error": None}

    if "connection reset" in output:
        return verdict
    if "connection timed out" in output or "no servers could be reached" in output:
        verdict["error"] = "Connection timeout"
        return verdict
    if "Transfer failed" in output or "failed" in output or "refused" in output:
        return verdict

    candidates = []
    for line in output.splitlines():
        s = line.strip()
        if not s or s.startswith(";") or s.startswith("<<>>") or _META_LINE.match(s):
            continue
        candidates.append(s)
    records = [s for s in candidates if _RECORD_LINE.match(s)]

    if records:
        verdict["vulnerable"] = True
        verdict["recordCount"] = len(records)
        verdict["records"] = records[:MAX_RECORDS_DISPLAY]
        return verdict

    verdict["note"] = "No zone data returned"
    return verdict


class AxfrProber:
    """
    Holds the process-wide tool capability flag. The probe runs at most once
    per instance; concurrent first callers wait on the lock.
    """

    def __init__(
        self,
        config: Optional[DiagnosticsConfig] = None,
        gateway: Optional[ResolverGateway] = None,
        runner: Optional[ToolRunner] = None,
        tool_available: Optional[bool] = None,
    ):
        self.config = config or DiagnosticsConfig.from_env()
        self.gateway = gateway or ResolverGateway(self.config)
        self.runner: ToolRunner = runner or run_tool
        self._available = tool_available
        self._lock = threading.Lock()

    def tool_available(self) -> bool:
        if self._available is not None:
            return self._available
        with self._lock:
            if self._available is None:
                self._available = self._probe_tool()
                log.info("AXFR tool {!r} available: {}", self.config.axfr_tool, self._available)
        return self._available

    def _probe_tool(self) -> bool:
        path = shutil.which(self.config.axfr_tool)
        if not path:
            return False
        try:
            proc = subprocess.run([path, "-v"], capture_output=True, timeout=2)
        except (OSError, subprocess.SubprocessError) as exc:
            log.warning("AXFR tool probe failed: {}", exc)
            return False
        return proc.returncode == 0

    async def _nameserver_ip(self, nameserver: str) -> Optional[str]:
        for rtype in ("A", "AAAA"):
            rcode, result = await self.gateway.try_resolve(nameserver, rtype)
            if rcode == "NOERROR" and result is not None:
                return result.data[0]
        return None

    async def probe_nameserver(self, domain: str, nameserver: str, available: bool) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "nameserver": nameserver,
            "ip": "N/A",
            "vulnerable": False,
            "recordCount": None,
            "records": None,
            "error": None,
            "responseTimeMs": 0,
        }
        ip = await self._nameserver_ip(nameserver)
        if ip is None:
            result["error"] = f"Failed to resolve nameserver: {nameserver}"
            return result
        result["ip"] = ip

        start = time.perf_counter()
        if not available:
            result["error"] = UNAVAILABLE_ERROR
            result["responseTimeMs"] = round((time.perf_counter() - start) * 1000, 2)
            return result

        argv = [self.config.axfr_tool, f"@{ip}", domain, "AXFR", "+time=5", "+retry=1", "+noidnout"]
        try:
            run = await self.runner(argv, self.config.axfr_timeout_s, self.config.axfr_max_output_bytes)
        except FileNotFoundError:
            result["error"] = "dig command not available"
            return result
        except OSError as exc:
            result["error"] = str(exc).splitlines()[0][:100] if str(exc) else "Unknown error"
            return result
        finally:
            result["responseTimeMs"] = round((time.perf_counter() - start) * 1000, 2)

        if run.timed_out and "connection reset" not in run.output:
            result["error"] = "Query timeout"
            return result

        result.update(classify_output(run.output))
        if run.truncated:
            result["truncated"] = True
        return result

    async def probe(self, domain: str, nameserver: Optional[str] = None) -> Dict[str, Any]:
        domain = clean_domain(domain)

        if nameserver and nameserver.strip():
            targets = [normalize_name(nameserver)]
        else:
            try:
                ns_result = await self.gateway.resolve(domain, "NS")
            except ResolutionError as exc:
                raise ResolutionError(exc.reason, f"Failed to resolve nameservers: {exc.message}")
            targets = ns_result.data

        if not targets:
            raise InputValidationError("No nameservers found for domain", {"domain": domain})
        targets = targets[: self.config.axfr_max_nameservers]

        available = await asyncio.to_thread(self.tool_available)
        results = list(await asyncio.gather(*(self.probe_nameserver(domain, ns, available) for ns in targets)))

        vulnerable = sum(1 for r in results if r["vulnerable"])
        log.info("AXFR probe {}: {} nameservers, {} vulnerable", domain, len(results), vulnerable)
        response: Dict[str, Any] = {
            "domain": domain,
            "nameservers": results,
            "summary": {
                "total": len(results),
                "vulnerable": vulnerable,
                "secure": sum(1 for r in results if not r["vulnerable"] and not r["error"]),
                "errors": sum(1 for r in results if r["error"]),
            },
            "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        if not available:
            response["limitedMode"] = True
            response["limitedModeReason"] = LIMITED_MODE_REASON
        return response
