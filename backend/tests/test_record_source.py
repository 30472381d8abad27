"""
test_record_source.py — Unit tests for the analytics-backend record source.

Tests cover:
  - Result parsing (JSON text, list, wrapped object)
  - Evenly spaced integrity sampling
  - Filter integrity: foreign unit ids, missing unit ids, row cap
  - LookerRecordSource over httpx.MockTransport: login, saved query reuse,
    merged unit/date filters, row mapping, sort order
  - fetch_all: concurrent queries, degradation of a failed query to [],
    integrity and configuration errors never degraded
  - Building / unit lookups
"""

import asyncio
import json
from datetime import date

import httpx
import pytest

from liftdiag import config
from liftdiag.errors import ConfigurationError, FilterIntegrityError, UpstreamError
from liftdiag.services.record_source import (
    LookerRecordSource,
    check_filter_integrity,
    parse_looker_result,
    sample_rows,
)

UNIT_ID = "U-42"

ROWS = {
    "visits": [
        {"device.id": UNIT_ID, "task.id": "T2", "task.completed_date": "2024-03-10",
         "task.type": "REPAIR", "task.global_comment": "Replaced PSU"},
        {"device.id": UNIT_ID, "task.id": "T1", "task.completed_date": "2024-03-01",
         "task.type": "REGULAR", "task.global_comment": "Routine"},
    ],
    "downtimes": [
        {"device.id": UNIT_ID, "breakdown.id": "BD-1", "breakdown.start_time": "2024-03-08 10:00:00"},
    ],
    "maintenance_issues": [
        {"device.id": UNIT_ID, "task.id": "T3", "task.completed_date": "2024-03-01",
         "issue.state_key": "car.door", "issue.problem_key": "noisy"},
    ],
    "parts_requests": [
        {"device.id": UNIT_ID, "repair_request.number": "RR-1", "repair_request.requested_date": "2024-03-05",
         "repair_request.status": "done", "repair_request.has_part_attached": "Yes",
         "part.name": '{"fr-FR": "Alimentation", "en-GB": "Power supply"}'},
    ],
    "buildings": [{"building.id": "B-1", "building.name": "Tour Horizon", "building.country_code": "FR"}],
    "units": [{"device.id": UNIT_ID, "device.name": "Lift A", "building.id": "B-1"}],
}


class FakeLooker:
    """MockTransport handler serving saved Looks and inline query runs."""

    def __init__(self, rows=None, fail_kinds=(), login_status=200):
        self.rows = rows if rows is not None else ROWS
        self.fail_kinds = set(fail_kinds)
        self.login_status = login_status
        self.logins = 0
        self.run_bodies = {}
        self.auth_headers = set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/api/4.0/login":
            self.logins += 1
            if self.login_status != 200:
                return httpx.Response(self.login_status, json={"message": "Not found"})
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})

        self.auth_headers.add(request.headers.get("Authorization"))
        if path.startswith("/api/4.0/looks/look-"):
            kind = path.rsplit("look-", 1)[1]
            return httpx.Response(200, json={"id": f"look-{kind}", "query": {
                "model": "maintenance", "view": kind, "fields": ["a", "b"], "filters": {"device.active": "yes"},
            }})
        if path == "/api/4.0/queries/run/json":
            body = json.loads(request.content)
            kind = body["view"]
            self.run_bodies[kind] = body
            if kind in self.fail_kinds:
                return httpx.Response(500, json={"message": "Internal error"})
            return httpx.Response(200, json=self.rows.get(kind, []))
        return httpx.Response(404)


def _source(handler, **kwargs):
    options = dict(
        base_url="https://looker.example.com",
        client_id="id",
        client_secret="secret",
        row_limit=100,
        sample_size=25,
        transport=httpx.MockTransport(handler),
        source_ids=lambda kind: (f"look-{kind}", None),
    )
    options.update(kwargs)
    return LookerRecordSource(**options)


# ===========================================================================
# Class 1: Parsing and sampling
# ===========================================================================

class TestParsing:

    def test_json_text(self):
        assert parse_looker_result('[{"a": 1}]') == [{"a": 1}]

    def test_empty_text(self):
        assert parse_looker_result("  ") == []

    def test_wrapped_object(self):
        assert parse_looker_result({"data": [{"a": 1}]}) == [{"a": 1}]
        assert parse_looker_result({"results": [{"a": 1}]}) == [{"a": 1}]

    def test_single_object(self):
        assert parse_looker_result({"a": 1}) == [{"a": 1}]

    def test_non_json_text_raises(self):
        with pytest.raises(UpstreamError):
            parse_looker_result("<html>Gateway timeout</html>")

    def test_sample_evenly_spaced(self):
        rows = [{"i": i} for i in range(10)]
        assert [r["i"] for r in sample_rows(rows, 4)] == [0, 3, 6, 9]

    def test_sample_small_batch_returned_whole(self):
        rows = [{"i": i} for i in range(3)]
        assert sample_rows(rows, 25) == rows


# ===========================================================================
# Class 2: Filter integrity
# ===========================================================================

class TestFilterIntegrity:

    def test_clean_batch_passes(self):
        check_filter_integrity([{"device.id": UNIT_ID}] * 5, "visits", UNIT_ID, row_limit=100)

    def test_foreign_unit_rejected(self):
        rows = [{"device.id": UNIT_ID}] * 4 + [{"device.id": "U-99"}]
        with pytest.raises(FilterIntegrityError) as exc_info:
            check_filter_integrity(rows, "visits", UNIT_ID, row_limit=100)
        assert exc_info.value.mismatched == 1
        assert exc_info.value.sampled == 5
        assert exc_info.value.kind == "visits"

    def test_missing_unit_id_rejected(self):
        with pytest.raises(FilterIntegrityError):
            check_filter_integrity([{"task.id": "T1"}], "visits", UNIT_ID, row_limit=100)

    def test_numeric_unit_id_matches(self):
        check_filter_integrity([{"device.id": 42}], "visits", "42", row_limit=100)

    def test_row_cap_rejected(self):
        rows = [{"device.id": UNIT_ID}] * 3
        with pytest.raises(FilterIntegrityError) as exc_info:
            check_filter_integrity(rows, "visits", UNIT_ID, row_limit=3)
        assert exc_info.value.row_count == 3

    def test_empty_batch_passes(self):
        check_filter_integrity([], "visits", UNIT_ID, row_limit=100)


# ===========================================================================
# Class 3: Looker record source
# ===========================================================================

class TestLookerRecordSource:

    def test_fetch_all_maps_and_sorts(self):
        looker = FakeLooker()
        records = asyncio.run(_source(looker).fetch_all(UNIT_ID, 30))

        assert records.counts() == {"visits": 2, "breakdowns": 1, "maintenanceIssues": 1, "repairRequests": 1}
        assert [v.task_id for v in records.visits] == ["T1", "T2"]
        assert records.visits[1].is_repair
        assert records.parts_requests[0].part_name == "Power supply"
        assert records.parts_requests[0].is_completed_replacement
        assert records.downtimes[0].is_ongoing

    def test_downtimes_sorted_by_utc_instant(self):
        """10:00+02:00 is 08:00 UTC, so it sorts before 09:00 UTC."""
        rows = dict(ROWS, downtimes=[
            {"device.id": UNIT_ID, "breakdown.id": "BD-UTC", "breakdown.start_time": "2024-03-08T09:00:00+00:00"},
            {"device.id": UNIT_ID, "breakdown.id": "BD-CET", "breakdown.start_time": "2024-03-08T10:00:00+02:00"},
        ])
        records = asyncio.run(_source(FakeLooker(rows=rows)).fetch_all(UNIT_ID, 30))
        assert [d.id for d in records.downtimes] == ["BD-CET", "BD-UTC"]

    def test_login_once_and_token_header(self):
        looker = FakeLooker()
        asyncio.run(_source(looker).fetch_all(UNIT_ID, 30))

        assert looker.logins == 1
        assert looker.auth_headers == {"token tok"}

    def test_filters_merged_into_saved_query(self):
        looker = FakeLooker()
        asyncio.run(_source(looker).fetch_visits(UNIT_ID, 30))

        body = looker.run_bodies["visits"]
        assert body["fields"] == ["a", "b"]
        assert body["limit"] == "100"
        assert body["filters"]["device.active"] == "yes"
        assert body["filters"][config.UNIT_FILTER_FIELD] == UNIT_ID
        date_filter = body["filters"][config.RECORD_DATE_FIELDS["visits"]]
        assert date_filter.startswith(">=")
        assert date.fromisoformat(date_filter[2:]) < date.today()

    def test_foreign_rows_fail_the_request(self):
        rows = dict(ROWS, visits=ROWS["visits"] + [{"device.id": "U-99", "task.id": "T9"}])
        with pytest.raises(FilterIntegrityError):
            asyncio.run(_source(FakeLooker(rows=rows)).fetch_all(UNIT_ID, 30))

    def test_truncated_batch_fails_the_request(self):
        with pytest.raises(FilterIntegrityError):
            asyncio.run(_source(FakeLooker(), row_limit=2).fetch_all(UNIT_ID, 30))

    def test_failed_query_degrades_to_empty(self, caplog):
        looker = FakeLooker(fail_kinds={"downtimes"})
        with caplog.at_level("WARNING", logger="liftdiag-records"):
            records = asyncio.run(_source(looker).fetch_all(UNIT_ID, 30))

        assert records.downtimes == []
        assert len(records.visits) == 2
        assert "continuing without" in caplog.text

    def test_upstream_error_on_direct_fetch(self):
        with pytest.raises(UpstreamError):
            asyncio.run(_source(FakeLooker(fail_kinds={"visits"})).fetch_visits(UNIT_ID, 30))

    def test_rejected_credentials(self):
        with pytest.raises(ConfigurationError):
            asyncio.run(_source(FakeLooker(login_status=401)).fetch_all(UNIT_ID, 30))

    def test_missing_configuration(self):
        with pytest.raises(ConfigurationError):
            asyncio.run(_source(FakeLooker(), client_secret="").fetch_all(UNIT_ID, 30))

    def test_missing_look_id(self):
        source = _source(FakeLooker(), source_ids=lambda kind: (None, None))
        with pytest.raises(ConfigurationError):
            asyncio.run(source.fetch_visits(UNIT_ID, 30))

    def test_lookups(self):
        looker = FakeLooker()
        buildings = asyncio.run(_source(looker).fetch_buildings("FR"))
        units = asyncio.run(_source(looker).fetch_units("B-1"))

        assert buildings == [{"id": "B-1", "name": "Tour Horizon", "address": "", "country": "FR"}]
        assert units == [{"id": UNIT_ID, "name": "Lift A", "buildingId": "B-1"}]
        assert looker.run_bodies["units"]["filters"][config.BUILDING_FILTER_FIELD] == "B-1"
        assert looker.run_bodies["buildings"]["filters"][config.COUNTRY_FILTER_FIELD] == "FR"
