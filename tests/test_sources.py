from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date

import httpx
import pytest

from relaywatch.config import get_settings
from relaywatch.errors import FetchFailure, ValidationFailure
from relaywatch.schemas import DateRange, Sensitivity, SourceType
from relaywatch.sources import (
    MetricsApiFetcher,
    MetricsPortalFetcher,
    create_source_fetcher,
    parse_metrics_payload,
    parse_portal_csv,
)

RANGE = DateRange(start=date(2024, 1, 1), end=date(2024, 1, 31))

_PORTAL_CSV = """\
# © The Tor Project, Inc. Licensed under CC BY 3.0 US.
# The unique ID for this graph is userstats-relay-country.
# The graph was generated on 2024-02-01 12:00:00.
# The graph shows data from 2024-01-01 to 2024-01-31.

# Columns: date, country, users, lower, upper, frac.
date,country,users,lower,upper,frac
2024-01-01,ru,51200,,,
2024-01-02,ru,49876,,,

2024-01-03,ru,,,,
2024-01-04,ru,50110,,,
"""


def _run(coro):
    return asyncio.run(coro)


# ── JSON payload normalization ──────────────────────────────────


class TestParseMetricsPayload:
    def test_normalizes_metrics_and_anomalies(self):
        payload = {
            "metrics": [
                {"date": "2024-01-01", "users": 10, "country": "RU"},
                {"date": "2024-01-02", "users": 12, "country": "us"},
            ],
            "anomalies": [
                {"interval": {"start": "2024-01-02", "end": "2024-01-02"}},
                {"interval": {"start": "2024-01-03", "end": "2024-01-09"}},
            ],
        }

        result = parse_metrics_payload(payload, SourceType.RELAY)

        assert result.source is SourceType.RELAY
        assert [(r.date, r.country, r.count) for r in result.records] == [
            (date(2024, 1, 1), "ru", 10),
            (date(2024, 1, 2), "us", 12),
        ]
        assert result.anomalies[0].is_point
        assert result.anomalies[1].end == date(2024, 1, 9)
        assert result.date_format == "date"

    def test_timestamps_are_reduced_to_days(self):
        payload = {
            "metrics": [{"date": "2024-01-01T00:00:00Z", "users": 3, "country": "de"}],
            "anomalies": [],
        }
        result = parse_metrics_payload(payload, SourceType.BRIDGE)
        assert result.records[0].date == date(2024, 1, 1)
        assert result.date_format == "datetime"

    def test_missing_lists_mean_empty(self):
        result = parse_metrics_payload({}, SourceType.RELAY)
        assert result.records == []
        assert result.anomalies == []
        assert result.date_format is None

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            {"metrics": "nope"},
            {"metrics": [{"date": "yesterday", "users": 1, "country": "ru"}]},
            {"metrics": [{"date": "2024-01-01", "users": -4, "country": "ru"}]},
            {"metrics": [{"date": "2024-01-01", "country": "ru"}]},
            {"anomalies": [{"start": "2024-01-01", "end": "2024-01-02"}]},
            {"anomalies": [{"interval": {"start": "2024-01-05", "end": "2024-01-02"}}]},
            {
                "metrics": [
                    {"date": "2024-01-01", "users": 1, "country": "ru"},
                    {"date": "2024-01-02T00:00:00Z", "users": 1, "country": "ru"},
                ]
            },
        ],
    )
    def test_malformed_payloads_raise_value_error(self, payload):
        with pytest.raises(ValueError):
            parse_metrics_payload(payload, SourceType.RELAY)


# ── MetricsApiFetcher ───────────────────────────────────────────


class TestMetricsApiFetcher:
    def test_requests_source_path_with_query_parameters(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "metrics": [{"date": "2024-01-01", "users": 7, "country": "ru"}],
                    "anomalies": [],
                },
            )

        async def scenario():
            async with MetricsApiFetcher(
                "http://metrics.local", transport=httpx.MockTransport(handler)
            ) as fetcher:
                return await fetcher.fetch(
                    ["ru", "us"], SourceType.BRIDGE, RANGE, Sensitivity.HIGH
                )

        result = _run(scenario())

        assert len(result.records) == 1
        request = seen[0]
        assert request.url.path == "/v1/metrics/bridges"
        assert request.url.params["from"] == "2024-01-01T00:00:00Z"
        assert request.url.params["to"] == "2024-01-31T00:00:00Z"
        assert request.url.params["countries"] == "ru,us"
        assert request.url.params["sensitivity"] == "HIGH"

    def test_http_error_becomes_fetch_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        async def scenario():
            async with MetricsApiFetcher(
                "http://metrics.local", transport=httpx.MockTransport(handler)
            ) as fetcher:
                await fetcher.fetch(["ru"], SourceType.RELAY, RANGE, Sensitivity.LOW)

        with pytest.raises(FetchFailure) as excinfo:
            _run(scenario())
        assert excinfo.value.source == "metrics-api"
        assert isinstance(excinfo.value.original_error, httpx.HTTPStatusError)

    def test_transport_error_becomes_fetch_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async def scenario():
            async with MetricsApiFetcher(
                "http://metrics.local", transport=httpx.MockTransport(handler)
            ) as fetcher:
                await fetcher.fetch(["ru"], SourceType.RELAY, RANGE, Sensitivity.LOW)

        with pytest.raises(FetchFailure, match="request failed"):
            _run(scenario())

    def test_invalid_json_becomes_fetch_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>oops</html>")

        async def scenario():
            async with MetricsApiFetcher(
                "http://metrics.local", transport=httpx.MockTransport(handler)
            ) as fetcher:
                await fetcher.fetch(["ru"], SourceType.RELAY, RANGE, Sensitivity.LOW)

        with pytest.raises(FetchFailure, match="invalid payload"):
            _run(scenario())

    def test_rejects_empty_countries_before_any_request(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={})

        async def scenario():
            async with MetricsApiFetcher(
                "http://metrics.local", transport=httpx.MockTransport(handler)
            ) as fetcher:
                await fetcher.fetch([], SourceType.RELAY, RANGE, Sensitivity.LOW)

        with pytest.raises(ValidationFailure):
            _run(scenario())
        assert calls == []

    def test_reversed_range_rejected(self):
        reversed_range = DateRange(start=date(2024, 2, 1), end=date(2024, 1, 1))

        async def scenario():
            async with MetricsApiFetcher(
                "http://metrics.local",
                transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})),
            ) as fetcher:
                await fetcher.fetch(
                    ["ru"], SourceType.RELAY, reversed_range, Sensitivity.LOW
                )

        with pytest.raises(ValidationFailure):
            _run(scenario())

    def test_combined_source_only_when_enabled(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json={"metrics": [], "anomalies": []})

        async def scenario(server_side_all: bool):
            async with MetricsApiFetcher(
                "http://metrics.local",
                server_side_all=server_side_all,
                transport=httpx.MockTransport(handler),
            ) as fetcher:
                await fetcher.fetch(["ru"], SourceType.ALL, RANGE, Sensitivity.LOW)

        _run(scenario(True))
        assert paths == ["/v1/metrics/all"]

        with pytest.raises(ValueError, match="combined"):
            _run(scenario(False))


# ── Legacy portal CSV ───────────────────────────────────────────


class TestParsePortalCsv:
    def test_skips_header_rows_and_blank_counts(self):
        records, fmt = parse_portal_csv(_PORTAL_CSV, "ru")

        assert [(r.date.isoformat(), r.count) for r in records] == [
            ("2024-01-01", 51200),
            ("2024-01-02", 49876),
            ("2024-01-04", 50110),
        ]
        assert all(r.country == "ru" for r in records)
        assert fmt == "date"

    def test_custom_header_row_count(self):
        text = "date,country,users\n2024-01-01,de,5\n"
        records, _ = parse_portal_csv(text, "de", header_rows=1)
        assert [r.count for r in records] == [5]

    def test_bad_date_raises(self):
        text = "h\nh\nh\nh\nh\nh\nlast tuesday,ru,5\n"
        with pytest.raises(ValueError, match="invalid date"):
            parse_portal_csv(text, "ru")


class TestMetricsPortalFetcher:
    def test_fetches_each_country_separately(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            country = request.url.params["country"]
            return httpx.Response(200, text=_PORTAL_CSV.replace(",ru,", f",{country},"))

        async def scenario():
            async with MetricsPortalFetcher(
                "https://portal.local", transport=httpx.MockTransport(handler)
            ) as fetcher:
                return await fetcher.fetch(
                    ["ru", "ee"], SourceType.RELAY, RANGE, Sensitivity.MEDIUM
                )

        result = _run(scenario())

        assert sorted(r.url.params["country"] for r in seen) == ["ee", "ru"]
        assert {r.url.path for r in seen} == {"/userstats-relay-country.csv"}
        assert seen[0].url.params["start"] == "2024-01-01"
        assert seen[0].url.params["end"] == "2024-01-31"
        assert sorted({r.country for r in result.records}) == ["ee", "ru"]
        assert len(result.records) == 6
        assert result.anomalies == []

    def test_one_failing_country_fails_the_fetch(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["country"] == "lv":
                return httpx.Response(500)
            return httpx.Response(200, text=_PORTAL_CSV)

        async def scenario():
            async with MetricsPortalFetcher(
                "https://portal.local", transport=httpx.MockTransport(handler)
            ) as fetcher:
                await fetcher.fetch(
                    ["ru", "lv"], SourceType.BRIDGE, RANGE, Sensitivity.LOW
                )

        with pytest.raises(FetchFailure) as excinfo:
            _run(scenario())
        assert excinfo.value.source == "metrics-portal"

    def test_never_supports_combined_source(self):
        async def scenario():
            async with MetricsPortalFetcher(
                "https://portal.local",
                transport=httpx.MockTransport(lambda r: httpx.Response(200, text="")),
            ) as fetcher:
                assert fetcher.supports_combined is False
                await fetcher.fetch(["ru"], SourceType.ALL, RANGE, Sensitivity.LOW)

        with pytest.raises(ValueError):
            _run(scenario())


# ── Factory ─────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("backend", "expected"),
    [("api", MetricsApiFetcher), ("portal", MetricsPortalFetcher)],
)
def test_create_source_fetcher_picks_backend(backend, expected):
    settings = replace(get_settings(), source_backend=backend)
    fetcher = create_source_fetcher(settings)
    try:
        assert isinstance(fetcher, expected)
    finally:
        _run(fetcher.aclose())


def test_create_source_fetcher_rejects_unknown_backend():
    settings = replace(get_settings(), source_backend="carrier-pigeon")
    with pytest.raises(ValueError, match="SOURCE_BACKEND"):
        create_source_fetcher(settings)
