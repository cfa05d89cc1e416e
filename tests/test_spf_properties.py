"""
Property-based tests for SPF expansion and flattening.
"""
import asyncio
from collections import Counter

from hypothesis import given, settings
from hypothesis import strategies as st

from checks_module.spf import (
    LIMIT_MESSAGE,
    NO_RECORD_MESSAGE,
    SpfContext,
    evaluate_spf,
    flatten_spf,
    select_spf_record,
)
from zone_gateway import ZoneGateway


def txt(record: str):
    return [f'"{record}"']


class TestSelectRecord:
    def test_first_spf_string_wins(self) -> None:
        texts = ["google-site-verification=abc", '"v=spf1 -all"', "v=spf1 +all"]
        assert select_spf_record(texts) == "v=spf1 -all"

    def test_prefix_is_case_insensitive(self) -> None:
        assert select_spf_record(["V=SPF1 mx -all"]) == "V=SPF1 mx -all"

    def test_no_spf_string(self) -> None:
        assert select_spf_record(["hello", ""]) is None


class TestEvaluate:
    def test_literal_record(self, make_gateway) -> None:
        gw = make_gateway({("example.com", "TXT"): txt("v=spf1 ip4:10.0.0.0/8 -all")})
        result = asyncio.run(evaluate_spf("example.com", gw))
        assert result["record"] == "v=spf1 ip4:10.0.0.0/8 -all"
        assert result["mechanisms"] == ["v=spf1", "ip4:10.0.0.0/8", "-all"]
        assert result["includes"] == []
        assert result["redirects"] == []
        assert result["lookupCount"] == 1

    def test_includes_are_expanded_in_place(self, make_gateway) -> None:
        gw = make_gateway({
            ("example.com", "TXT"): txt("v=spf1 include:_spf.example.net mx -all"),
            ("_spf.example.net", "TXT"): txt("v=spf1 ip4:192.0.2.0/24 ~all"),
        })
        result = asyncio.run(evaluate_spf("example.com", gw))
        assert result["mechanisms"] == ["v=spf1", "mx", "-all"]
        include = result["includes"][0]
        assert include["domain"] == "_spf.example.net"
        assert include["result"]["mechanisms"] == ["v=spf1", "ip4:192.0.2.0/24", "~all"]
        assert result["lookupCount"] == 2

    def test_redirect_goes_to_its_own_bucket(self, make_gateway) -> None:
        gw = make_gateway({
            ("example.org", "TXT"): txt("v=spf1 redirect=_spf.example.org"),
            ("_spf.example.org", "TXT"): txt("v=spf1 ip6:2001:db8::/32 -all"),
        })
        result = asyncio.run(evaluate_spf("example.org", gw))
        assert result["includes"] == []
        assert result["redirects"][0]["domain"] == "_spf.example.org"
        assert result["redirects"][0]["result"]["mechanisms"][1] == "ip6:2001:db8::/32"

    def test_missing_record_is_an_error_body(self, make_gateway) -> None:
        gw = make_gateway({("example.com", "TXT"): txt("hello world")})
        assert asyncio.run(evaluate_spf("example.com", gw)) == {"error": NO_RECORD_MESSAGE}
        assert asyncio.run(evaluate_spf("absent.example", gw)) == {"error": NO_RECORD_MESSAGE}

    def test_branch_failure_is_embedded(self, make_gateway) -> None:
        gw = make_gateway({
            ("example.com", "TXT"): txt("v=spf1 include:broken.example.net include:nospf.example.net -all"),
            ("broken.example.net", "TXT"): txt("v=spf1 -all"),
            ("nospf.example.net", "TXT"): txt("just text"),
        }, fail_names=["broken.example.net"])
        result = asyncio.run(evaluate_spf("example.com", gw))
        assert result["record"].startswith("v=spf1")
        assert "error" in result["includes"][0]["result"]
        assert result["includes"][1]["result"] == {"error": NO_RECORD_MESSAGE}

    def test_cycle_is_reported_not_followed(self, make_gateway) -> None:
        gw = make_gateway({
            ("a.example", "TXT"): txt("v=spf1 include:b.example -all"),
            ("b.example", "TXT"): txt("v=spf1 include:a.example -all"),
        })
        result = asyncio.run(evaluate_spf("a.example", gw))
        inner = result["includes"][0]["result"]
        assert inner["includes"][0]["result"] == {"error": LIMIT_MESSAGE}
        assert len(gw.fetches_of("TXT")) == 2

    def test_long_chain_stops_at_budget(self, make_gateway) -> None:
        zone = {(f"d{i}.example", "TXT"): txt(f"v=spf1 include:d{i + 1}.example -all") for i in range(30)}
        gw = make_gateway(zone)
        asyncio.run(evaluate_spf("d0.example", gw))
        assert len(gw.fetches_of("TXT")) == 11

    def test_context_is_per_call(self, make_gateway) -> None:
        gw = make_gateway({("example.com", "TXT"): txt("v=spf1 -all")})
        first = asyncio.run(evaluate_spf("example.com", gw))
        second = asyncio.run(evaluate_spf("example.com", gw))
        assert first == second

    def test_explicit_context_is_honoured(self, make_gateway) -> None:
        gw = make_gateway({("example.com", "TXT"): txt("v=spf1 -all")})
        ctx = SpfContext(max_lookups=10, visited={"example.com"})
        assert asyncio.run(evaluate_spf("example.com", gw, ctx)) == {"error": LIMIT_MESSAGE}
        assert gw.fetches == []

    @given(n=st.integers(min_value=1, max_value=20), data=st.data())
    @settings(max_examples=60, deadline=None)
    def test_random_include_graphs_terminate_within_budget(self, n, data) -> None:
        edges = data.draw(st.lists(
            st.lists(st.integers(min_value=0, max_value=n - 1), max_size=4),
            min_size=n,
            max_size=n,
        ))
        zone = {
            (f"d{i}.example", "TXT"): txt(" ".join(["v=spf1"] + [f"include:d{j}.example" for j in targets] + ["-all"]))
            for i, targets in enumerate(edges)
        }
        gw = ZoneGateway(zone)
        result = asyncio.run(evaluate_spf("d0.example", gw))

        fetched = [f[1] for f in gw.fetches_of("TXT")]
        assert len(fetched) <= 11
        assert max(Counter(fetched).values()) == 1
        assert result["record"].startswith("v=spf1")


FLATTEN_ZONE = {
    ("example.com", "TXT"): txt(
        "v=spf1 ip4:198.51.100.0/24 include:_spf.example.net a:web.example.com mx ip4:192.0.2.0/24 -all"
    ),
    ("example.com", "MX"): ["10 mail.example.com."],
    ("_spf.example.net", "TXT"): txt("v=spf1 ip6:2001:db8::/32 ~all"),
    ("web.example.com", "A"): ["203.0.113.10"],
    ("mail.example.com", "A"): ["203.0.113.20"],
}


class TestFlatten:
    def test_flattens_to_literal_addresses(self, make_gateway) -> None:
        result = asyncio.run(flatten_spf("example.com", make_gateway(FLATTEN_ZONE)))
        assert result["flattened"] == (
            "v=spf1 ip4:198.51.100.0/24 ip6:2001:db8::/32 ip4:203.0.113.10 "
            "ip4:203.0.113.20 ip4:192.0.2.0/24 -all"
        )
        assert result["stats"]["dnsLookups"] == 4
        assert result["stats"]["ipv4Count"] == 4
        assert result["stats"]["ipv6Count"] == 1
        assert result["stats"]["includeDepth"] == 1
        assert result["stats"]["recordLength"] == len(result["flattened"])
        assert result["expansions"] == [
            {"type": "include", "value": "_spf.example.net", "depth": 1, "resolved": ["ip6:2001:db8::/32"]}
        ]
        assert result["warnings"] == []

    def test_duplicates_are_removed(self, make_gateway) -> None:
        gw = make_gateway({
            ("example.com", "TXT"): txt("v=spf1 ip4:192.0.2.1 include:inc.example.com -all"),
            ("inc.example.com", "TXT"): txt("v=spf1 ip4:192.0.2.1 ip4:192.0.2.2 -all"),
        })
        result = asyncio.run(flatten_spf("example.com", gw))
        assert result["flattened"] == "v=spf1 ip4:192.0.2.1 ip4:192.0.2.2 -all"

    def test_redirect_supplies_the_all_term(self, make_gateway) -> None:
        gw = make_gateway({
            ("example.com", "TXT"): txt("v=spf1 ip4:192.0.2.1 redirect=_spf.example.com"),
            ("_spf.example.com", "TXT"): txt("v=spf1 ip4:192.0.2.9 -all"),
        })
        result = asyncio.run(flatten_spf("example.com", gw))
        assert result["flattened"] == "v=spf1 ip4:192.0.2.1 ip4:192.0.2.9 -all"
        assert result["expansions"][0]["type"] == "redirect"

    def test_circular_include_is_warned(self, make_gateway) -> None:
        gw = make_gateway({
            ("a.example", "TXT"): txt("v=spf1 include:b.example -all"),
            ("b.example", "TXT"): txt("v=spf1 include:a.example ip4:192.0.2.5 -all"),
        })
        result = asyncio.run(flatten_spf("a.example", gw))
        assert "Circular reference detected at include:a.example" in result["warnings"]
        assert result["flattened"] == "v=spf1 ip4:192.0.2.5 -all"

    def test_ptr_is_kept_with_warning(self, make_gateway) -> None:
        gw = make_gateway({("example.com", "TXT"): txt("v=spf1 ptr -all")})
        result = asyncio.run(flatten_spf("example.com", gw))
        assert result["flattened"] == "v=spf1 ptr -all"
        assert "ptr cannot be flattened and still requires DNS lookups" in result["warnings"]

    def test_lookup_limit_warning(self, make_gateway) -> None:
        hosts = [f"h{i}.example.com" for i in range(11)]
        zone = {("example.com", "TXT"): txt("v=spf1 " + " ".join(f"a:{h}" for h in hosts) + " -all")}
        zone.update({(h, "A"): [f"192.0.2.{i + 1}"] for i, h in enumerate(hosts)})
        result = asyncio.run(flatten_spf("example.com", make_gateway(zone)))
        assert result["warnings"][0] == "DNS lookup limit exceeded (12 lookups, RFC limit: 10)"
        assert "ip4:192.0.2.10" in result["flattened"]
        assert "a:h9.example.com" not in result["flattened"]
        assert "a:h10.example.com" in result["flattened"]
        assert "ip4:192.0.2.11" not in result["flattened"]
        assert result["stats"]["dnsLookups"] == 12

    def test_long_result_warns_about_string_split(self, make_gateway) -> None:
        literal = " ".join(f"ip4:198.51.100.{i}" for i in range(20))
        gw = make_gateway({("example.com", "TXT"): txt(f"v=spf1 {literal} -all")})
        result = asyncio.run(flatten_spf("example.com", gw))
        assert 255 < result["stats"]["recordLength"] <= 450
        assert any("255 characters" in w for w in result["warnings"])

    def test_missing_record_is_an_error_body(self, make_gateway) -> None:
        gw = make_gateway({("example.com", "TXT"): txt("nope")})
        result = asyncio.run(flatten_spf("example.com", gw))
        assert result["error"].startswith("SPF flatten failed")
        assert result["domain"] == "example.com"
