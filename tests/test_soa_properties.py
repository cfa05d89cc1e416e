"""
Property-based tests for SOA serial analysis and timer recommendations.
"""
import asyncio
import datetime

from hypothesis import given, settings
from hypothesis import strategies as st

from checks_module.soa import (
    DATE_BASED,
    SEQUENTIAL,
    UNIX_TIMESTAMP,
    analyze_serial,
    analyze_soa_serial,
    format_duration,
    soa_recommendations,
)

NOW = datetime.datetime(2025, 1, 1, tzinfo=datetime.timezone.utc).timestamp()
SOA = "ns1.example.com. hostmaster.example.com. 2024101501 7200 3600 1209600 3600"


class TestSerialFormat:
    def test_date_based(self) -> None:
        analysis = analyze_serial(2024101501, now=NOW)
        assert analysis["format"] == DATE_BASED
        assert analysis["likely"] is True
        assert analysis["date"] == "2024-10-15"
        assert analysis["sequence"] == 1
        assert analysis["interpretation"] == "Date-based serial: Tue Oct 15 2024, sequence 01"

    def test_unix_timestamp(self) -> None:
        analysis = analyze_serial(1700000000, now=NOW)
        assert analysis["format"] == UNIX_TIMESTAMP
        assert analysis["date"] == "2023-11-14"
        assert analysis["interpretation"] == "Unix timestamp: 2023-11-14T22:13:20Z"

    def test_small_counter_is_sequential(self) -> None:
        analysis = analyze_serial(42, now=NOW)
        assert analysis == {"format": SEQUENTIAL, "likely": False, "interpretation": "Sequential or custom format: 42"}

    def test_impossible_date_falls_through(self) -> None:
        assert analyze_serial(2024133001, now=NOW)["format"] == SEQUENTIAL

    @given(
        day=st.dates(min_value=datetime.date(1990, 1, 1), max_value=datetime.date(2029, 12, 31)),
        seq=st.integers(min_value=0, max_value=99),
    )
    @settings(max_examples=100)
    def test_every_valid_yyyymmddnn_is_date_based(self, day, seq) -> None:
        serial = int(day.strftime("%Y%m%d") + f"{seq:02d}")
        analysis = analyze_serial(serial, now=NOW)
        assert analysis["format"] == DATE_BASED
        assert analysis["date"] == day.isoformat()
        assert analysis["sequence"] == seq

    @given(serial=st.integers(min_value=0, max_value=2**32 - 1))
    @settings(max_examples=200)
    def test_any_serial_gets_a_format(self, serial) -> None:
        analysis = analyze_serial(serial, now=NOW)
        assert analysis["format"] in (DATE_BASED, UNIX_TIMESTAMP, SEQUENTIAL)
        assert analysis["likely"] is (analysis["format"] != SEQUENTIAL)


class TestDurations:
    def test_units(self) -> None:
        assert format_duration(59) == "59s"
        assert format_duration(90) == "1m 30s"
        assert format_duration(7200) == "2h 0m"
        assert format_duration(1209600) == "14d 0h"


class TestRecommendations:
    def test_healthy_timers(self) -> None:
        assert soa_recommendations(7200, 3600, 1209600, 3600, 3600) == []

    def test_every_rule_fires(self) -> None:
        recs = soa_recommendations(refresh=600, retry=600, expire=900, minimum=172800, ttl=60)
        assert [(r["severity"], r["field"]) for r in recs] == [
            ("warning", "refresh"),
            ("error", "retry"),
            ("warning", "expire"),
            ("warning", "minimum"),
            ("info", "ttl"),
        ]

    def test_high_refresh_is_informational(self) -> None:
        recs = soa_recommendations(refresh=172800, retry=3600, expire=2419200, minimum=3600, ttl=3600)
        assert recs == [{
            "severity": "info",
            "field": "refresh",
            "message": "Refresh interval is high (> 24 hours), secondaries may be slow to detect changes",
        }]

    @given(
        refresh=st.integers(min_value=0, max_value=10**6),
        retry=st.integers(min_value=0, max_value=10**6),
        expire=st.integers(min_value=0, max_value=10**7),
        minimum=st.integers(min_value=0, max_value=10**6),
        ttl=st.integers(min_value=0, max_value=10**6),
    )
    @settings(max_examples=200)
    def test_retry_error_iff_retry_not_below_refresh(self, refresh, retry, expire, minimum, ttl) -> None:
        recs = soa_recommendations(refresh, retry, expire, minimum, ttl)
        assert all(r["severity"] in ("info", "warning", "error") for r in recs)
        assert any(r["field"] == "retry" for r in recs) is (retry >= refresh)
        assert any(r["field"] == "expire" for r in recs) is (expire < refresh * 2)


class TestAnalyzeSoa:
    def test_end_to_end(self, make_gateway) -> None:
        gw = make_gateway({("example.com", "SOA"): [SOA]}, ttl=3600)
        result = asyncio.run(analyze_soa_serial("example.com", gw))
        assert result["serial"] == 2024101501
        assert result["serialFormat"] == DATE_BASED
        assert result["refresh"] == 7200
        assert result["ttl"] == 3600
        assert result["soa"]["primaryNameserver"] == "ns1.example.com"
        assert result["soa"]["responsibleEmail"] == "hostmaster@example.com"
        assert result["timings"]["expire"] == "14d 0h"
        assert result["recommendations"] == []
        assert result["warnings"] == []

    def test_low_ttl_recommendation(self, make_gateway) -> None:
        gw = make_gateway({("example.com", "SOA"): [SOA]}, ttl=120)
        result = asyncio.run(analyze_soa_serial("example.com", gw))
        assert [r["field"] for r in result["recommendations"]] == ["ttl"]

    def test_no_soa(self, make_gateway) -> None:
        result = asyncio.run(analyze_soa_serial("example.com", make_gateway({})))
        assert result == {"error": "No SOA record found", "domain": "example.com"}

    def test_malformed_soa(self, make_gateway) -> None:
        gw = make_gateway({("example.com", "SOA"): ["ns1.example.com. hostmaster.example.com. x 1 2 3 4"]})
        result = asyncio.run(analyze_soa_serial("example.com", gw))
        assert result["error"] == "Invalid SOA record format"

    def test_lookup_failure(self, make_gateway) -> None:
        gw = make_gateway({}).fail_all_doh()
        result = asyncio.run(analyze_soa_serial("example.com", gw))
        assert result["domain"] == "example.com"
        assert "timed out" in result["error"]
