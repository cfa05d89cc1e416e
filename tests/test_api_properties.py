"""
HTTP surface tests: request validation, status mapping and action dispatch.
"""
import pytest
from fastapi.testclient import TestClient
from hypothesis import given, settings
from hypothesis import strategies as st

import api
from checks_module.axfr import AxfrProber, LIMITED_MODE_REASON
from dns_module.config import DiagnosticsConfig
from zone_gateway import ZoneGateway


ZONE = {
    ("example.com", "A"): ["93.184.216.34"],
    ("example.com", "TXT"): ['"v=spf1 ip4:10.0.0.0/8 -all"'],
    ("example.com", "NS"): ["ns1.example.com.", "ns1.awsdns.com."],
    ("example.com", "SOA"): ["ns1.example.com. hostmaster.example.com. 2024101501 7200 3600 1209600 3600"],
    ("example.com", "CAA"): ['0 issue "letsencrypt.org"'],
    ("_dmarc.example.com", "TXT"): ['"v=DMARC1; p=reject; rua=mailto:d@example.com"'],
    ("ns1.example.com", "A"): ["192.0.2.53"],
    ("ns1.example.com", "AAAA"): ["2001:db8::53"],
    ("ns1.awsdns.com", "A"): ["198.51.100.1"],
    ("8.8.8.8.in-addr.arpa", "PTR"): ["dns.google."],
}

DNS = "/api/diagnostics/dns"


@pytest.fixture
def gateway():
    return ZoneGateway(ZONE)


@pytest.fixture
def client(gateway):
    api.app.dependency_overrides[api.get_gateway] = lambda: gateway
    api.app.dependency_overrides[api.get_axfr_prober] = lambda: AxfrProber(
        DiagnosticsConfig(), gateway, tool_available=False
    )
    yield TestClient(api.app, raise_server_exceptions=False)
    api.app.dependency_overrides.clear()


class TestLookup:
    def test_answer(self, client) -> None:
        resp = client.post(DNS, json={"action": "lookup", "name": "example.com", "type": "A"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["Answer"] == [{"data": "93.184.216.34", "TTL": 300}]
        assert body["warnings"] == []

    def test_no_records_is_404(self, client) -> None:
        resp = client.post(DNS, json={"action": "lookup", "name": "missing.example.com"})
        assert resp.status_code == 404
        assert resp.json()["noRecords"] is True

    def test_private_custom_server_is_403(self, client, gateway) -> None:
        resp = client.post(DNS, json={
            "action": "lookup",
            "name": "example.com",
            "resolverOpts": {"customServer": "127.0.0.1", "preferDoH": False},
        })
        assert resp.status_code == 403
        assert resp.json()["error"] == "forbiddenServer"
        assert gateway.fetches == []

    def test_legacy_option_names(self, client, gateway) -> None:
        resp = client.post(DNS, json={"action": "lookup", "name": "example.com", "resolverOpts": {"doh": "google"}})
        assert resp.status_code == 200
        assert gateway.fetches[0][0] == DiagnosticsConfig().endpoint_for("google")

    def test_bad_name_is_400(self, client, gateway) -> None:
        resp = client.post(DNS, json={"action": "lookup", "name": "not a domain!"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalidInput"
        assert gateway.fetches == []

    def test_unsupported_type_is_400(self, client) -> None:
        resp = client.post(DNS, json={"action": "lookup", "name": "example.com", "type": "HINFO"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "unsupportedType"

    def test_exhausted_resolution_is_500(self, client, gateway) -> None:
        gateway.fail_all_doh()
        resp = client.post(DNS, json={"action": "lookup", "name": "example.com"})
        assert resp.status_code == 500
        assert resp.json()["error"] == "timeout"

    def test_reverse_lookup(self, client) -> None:
        resp = client.post(DNS, json={"action": "reverse-lookup", "ip": "8.8.8.8"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["reverseName"] == "8.8.8.8.in-addr.arpa"
        assert body["Answer"][0]["data"] == "dns.google"

    def test_reverse_lookup_bad_ip(self, client) -> None:
        assert client.post(DNS, json={"action": "reverse-lookup", "ip": "999.1.1.1"}).status_code == 400


class TestDispatch:
    def test_unknown_action_is_400(self, client) -> None:
        resp = client.post(DNS, json={"action": "zone-walk", "domain": "example.com"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalidRequest"

    def test_missing_field_is_400(self, client) -> None:
        assert client.post(DNS, json={"action": "spf-evaluator"}).status_code == 400

    def test_spf_evaluator(self, client) -> None:
        body = client.post(DNS, json={"action": "spf-evaluator", "domain": "example.com"}).json()
        assert body["mechanisms"] == ["v=spf1", "ip4:10.0.0.0/8", "-all"]
        assert body["includes"] == []

    def test_spf_flatten(self, client) -> None:
        body = client.post(DNS, json={"action": "spf-flatten", "domain": "example.com"}).json()
        assert body["flattened"] == "v=spf1 ip4:10.0.0.0/8 -all"

    def test_dmarc(self, client) -> None:
        body = client.post(DNS, json={"action": "dmarc-check", "domain": "example.com"}).json()
        assert body["hasRecord"] is True
        assert body["issues"] == []

    def test_caa(self, client) -> None:
        body = client.post(DNS, json={"action": "caa-effective", "name": "www.example.com"}).json()
        assert body["effective"]["domain"] == "example.com"

    def test_glue(self, client) -> None:
        body = client.post(DNS, json={"action": "glue-check", "zone": "example.com"}).json()
        assert body["summary"]["requiringGlue"] == 1
        assert body["summary"]["withValidGlue"] == 1

    def test_ns_soa(self, client) -> None:
        body = client.post(DNS, json={"action": "ns-soa-check", "domain": "example.com"}).json()
        assert body["consistency"] is True

    def test_soa_serial(self, client) -> None:
        body = client.post(DNS, json={"action": "soa-serial", "domain": "example.com"}).json()
        assert body["serial"] == 2024101501

    def test_adflag(self, client) -> None:
        body = client.post(DNS, json={"action": "dnssec-adflag", "name": "example.com"}).json()
        assert body["authenticated"] is False
        assert body["resolver"] == "cloudflare"

    def test_propagation(self, client) -> None:
        body = client.post(DNS, json={"action": "propagation", "name": "example.com"}).json()
        assert body["consistent"] is True
        assert len(body["results"]) == 4

    def test_trace(self, client) -> None:
        resp = client.post(DNS, json={"action": "trace", "domain": "example.com"})
        assert resp.status_code == 200
        assert resp.json()["path"][-1]["response"] == {"type": "answer", "data": ["93.184.216.34"]}

    @given(action=st.sampled_from(["spf-evaluator", "dmarc-check", "ns-soa-check", "trace", "spf-flatten"]))
    @settings(max_examples=10, deadline=None)
    def test_invalid_domain_never_reaches_dns(self, action) -> None:
        gw = ZoneGateway(ZONE)
        api.app.dependency_overrides[api.get_gateway] = lambda: gw
        try:
            resp = TestClient(api.app).post(DNS, json={"action": action, "domain": "-bad-.."})
        finally:
            api.app.dependency_overrides.clear()
        assert resp.status_code == 400
        assert gw.fetches == []


class TestOtherRoutes:
    def test_health(self, client) -> None:
        assert client.get("/health").json() == {"status": "ok"}

    def test_axfr_limited_mode(self, client) -> None:
        resp = client.post("/api/diagnostics/axfr", json={"domain": "example.com"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["limitedMode"] is True
        assert body["limitedModeReason"] == LIMITED_MODE_REASON
        assert body["summary"]["total"] == 2

    def test_axfr_invalid_domain(self, client) -> None:
        assert client.post("/api/diagnostics/axfr", json={"domain": "bad domain"}).status_code == 400

    def test_dnssec_validation_invalid_domain(self, client) -> None:
        resp = client.post("/api/diagnostics/dnssec-validation", json={"domain": "not valid"})
        assert resp.status_code == 400

    def test_dnssec_validation_unsigned(self, client) -> None:
        body = client.post("/api/diagnostics/dnssec-validation", json={"domain": "example.com"}).json()
        assert body["valid"] is False
        assert [link["zoneName"] for link in body["chain"]] == [".", "com", "example.com"]

    def test_api_key_enforced_when_configured(self, client, monkeypatch) -> None:
        monkeypatch.setenv("API_KEY", "secret")
        assert client.post(DNS, json={"action": "lookup", "name": "example.com"}).status_code == 403
        ok = client.post(DNS, json={"action": "lookup", "name": "example.com"}, headers={"X-API-Key": "secret"})
        assert ok.status_code == 200
