"""
Record Source — unit-scoped maintenance history from the analytics backend.

Each query runs a saved Look or query with the unit filter and a look-back
date filter merged in, then:
  1. parses the raw result into a list of rows (string / list / wrapped object)
  2. verifies filter integrity (sampled unit ids, row cap)
  3. maps rows into typed records

The backend is filter-unreliable: rows for other units or a batch truncated
at the row cap raise FilterIntegrityError. Rows are never post-filtered here.
"""
import asyncio
import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, List, Optional

import httpx

from liftdiag import config
from liftdiag.errors import ConfigurationError, FilterIntegrityError, UpstreamError
from liftdiag.models.records import (
    DowntimeRecord,
    MaintenanceIssueRecord,
    PartsRequestRecord,
    UnitRecords,
    VisitRecord,
    pick,
    utc_naive,
)
from liftdiag.services.date_range import window_start

logger = logging.getLogger("liftdiag-records")

API_PREFIX = "/api/4.0"

# Keys checked, in order, for the unit id embedded in a returned row
UNIT_ID_KEYS = (config.UNIT_FILTER_FIELD, "unitId", "device.id", "unit.id")

# Query body fields carried over from a saved query when re-running it inline
_QUERY_FIELDS = ("model", "view", "fields", "pivots", "fill_fields", "filters",
                 "filter_expression", "sorts", "dynamic_fields", "query_timezone")


def parse_looker_result(result: Any) -> List[dict]:
    """Normalize a raw backend result into a list of row dicts."""
    if isinstance(result, (bytes, str)):
        text = result.decode() if isinstance(result, bytes) else result
        if not text.strip():
            return []
        try:
            result = json.loads(text)
        except ValueError as e:
            raise UpstreamError(f"Analytics backend returned non-JSON payload: {e}")
    if isinstance(result, list):
        return result
    if isinstance(result, dict):
        for key in ("data", "rows", "values"):
            if key in result:
                return result[key] if isinstance(result[key], list) else []
        for value in result.values():
            if isinstance(value, list):
                return value
        return [result]
    return []


def sample_rows(rows: List[dict], size: int) -> List[dict]:
    """Evenly spaced sample covering the whole batch, first and last row included."""
    if size <= 0 or len(rows) <= size:
        return list(rows)
    if size == 1:
        return [rows[0]]
    step = (len(rows) - 1) / (size - 1)
    return [rows[round(i * step)] for i in range(size)]


def row_unit_id(row: dict) -> Optional[str]:
    value = pick(row, *UNIT_ID_KEYS)
    return str(value).strip() if value is not None else None


def check_filter_integrity(
    rows: List[dict],
    kind: str,
    unit_id: str,
    row_limit: int = config.LOOKER_ROW_LIMIT,
    sample_size: int = config.INTEGRITY_SAMPLE_SIZE,
) -> None:
    """
    Raise FilterIntegrityError when the batch is at the row cap or any sampled
    row carries a different (or no) unit id.
    """
    if row_limit and len(rows) >= row_limit:
        logger.error(f"{kind} for unit {unit_id}: {len(rows)} rows hit the row cap ({row_limit})")
        raise FilterIntegrityError(
            f"{kind} query for unit {unit_id} returned {len(rows)} rows, the row cap; "
            f"results are truncated",
            kind=kind, unit_id=unit_id, row_count=len(rows),
        )

    sampled = sample_rows(rows, sample_size)
    mismatched = [row_unit_id(row) for row in sampled if row_unit_id(row) != str(unit_id)]
    if mismatched:
        logger.error(
            f"{kind} for unit {unit_id}: {len(mismatched)}/{len(sampled)} sampled rows "
            f"belong to other units {sorted({m or '<missing>' for m in mismatched})[:5]}"
        )
        raise FilterIntegrityError(
            f"{kind} query for unit {unit_id} returned rows for other units "
            f"({len(mismatched)} of {len(sampled)} sampled rows)",
            kind=kind, unit_id=unit_id, sampled=len(sampled),
            mismatched=len(mismatched), row_count=len(rows),
        )


# ── Interface ──────────────────────────────────────────────────────────────────

class RecordSource:
    """Four unit-scoped queries plus the building / unit lookups."""

    async def fetch_visits(self, unit_id: str, days: int) -> List[VisitRecord]:
        raise NotImplementedError

    async def fetch_downtimes(self, unit_id: str, days: int) -> List[DowntimeRecord]:
        raise NotImplementedError

    async def fetch_issues(self, unit_id: str, days: int) -> List[MaintenanceIssueRecord]:
        raise NotImplementedError

    async def fetch_parts_requests(self, unit_id: str, days: int) -> List[PartsRequestRecord]:
        raise NotImplementedError

    async def fetch_buildings(self, country: Optional[str] = None) -> List[dict]:
        raise NotImplementedError

    async def fetch_units(self, building_id: str) -> List[dict]:
        raise NotImplementedError

    async def fetch_all(self, unit_id: str, days: int) -> UnitRecords:
        """
        Run the four queries concurrently.

        A failed query degrades to an empty collection with a warning, so the
        diagnostic proceeds on whatever history is available. Filter-integrity
        and configuration errors are re-raised: they are never degraded.
        """
        kinds = ("visits", "downtimes", "maintenance_issues", "parts_requests")
        results = await asyncio.gather(
            self.fetch_visits(unit_id, days),
            self.fetch_downtimes(unit_id, days),
            self.fetch_issues(unit_id, days),
            self.fetch_parts_requests(unit_id, days),
            return_exceptions=True,
        )

        collected = []
        for kind, result in zip(kinds, results):
            if isinstance(result, (FilterIntegrityError, ConfigurationError)):
                raise result
            if isinstance(result, Exception):
                logger.warning(f"Fetching {kind} for unit {unit_id} failed, continuing without: {result}")
                collected.append([])
            else:
                collected.append(result)

        records = UnitRecords(*collected)
        logger.info(f"Compiled records for unit {unit_id} ({days} days): {records.counts()}")
        return records


# ── Looker ─────────────────────────────────────────────────────────────────────

def _sort_key(attr: str) -> Callable:
    def key(record):
        value = getattr(record, attr)
        if value is None:
            return (1, "")
        return (0, utc_naive(value).isoformat() if isinstance(value, datetime) else value.isoformat())
    return key


class LookerRecordSource(RecordSource):
    """
    RecordSource over the Looker 4.0 REST API.

    Saved Looks / queries are configured per record kind (LOOKER_<KIND>_LOOK_ID
    or LOOKER_<KIND>_QUERY_ID). Their query body is fetched once, the request
    filters merged in, and the result run inline as JSON.
    """

    def __init__(
        self,
        base_url: str = config.LOOKER_API_BASE_URL,
        client_id: str = config.LOOKER_CLIENT_ID,
        client_secret: str = config.LOOKER_CLIENT_SECRET,
        row_limit: int = config.LOOKER_ROW_LIMIT,
        sample_size: int = config.INTEGRITY_SAMPLE_SIZE,
        timeout: float = config.LOOKER_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        source_ids: Callable = config.looker_source_ids,
    ):
        base_url = (base_url or "").rstrip("/")
        if base_url.endswith(API_PREFIX):
            base_url = base_url[: -len(API_PREFIX)]
        self.base_url = base_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.row_limit = row_limit
        self.sample_size = sample_size
        self.timeout = timeout
        self.transport = transport
        self.source_ids = source_ids
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._login_lock = asyncio.Lock()
        self._query_cache: dict = {}

    # ── HTTP plumbing ────────────────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url + API_PREFIX,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        if not (self.base_url and self.client_id and self.client_secret):
            raise ConfigurationError(
                "LOOKER_API_BASE_URL, LOOKER_CLIENT_ID and LOOKER_CLIENT_SECRET must be set"
            )
        async with self._login_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            response = await client.post(
                "/login",
                data={"client_id": self.client_id, "client_secret": self.client_secret},
            )
            if response.status_code in (401, 403):
                raise ConfigurationError(f"Analytics backend rejected credentials (HTTP {response.status_code})")
            response.raise_for_status()
            payload = response.json()
            self._token = payload["access_token"]
            # Refresh a minute early
            self._token_expires_at = time.monotonic() + max(0, int(payload.get("expires_in", 3600)) - 60)
            logger.debug("Authenticated against analytics backend")
            return self._token

    async def _request(self, client: httpx.AsyncClient, method: str, path: str, **kwargs) -> httpx.Response:
        token = await self._access_token(client)
        headers = {"Authorization": f"token {token}"}
        response = await client.request(method, path, headers=headers, **kwargs)
        response.raise_for_status()
        return response

    async def _saved_query(self, client: httpx.AsyncClient, kind: str) -> dict:
        if kind in self._query_cache:
            return self._query_cache[kind]
        look_id, query_id = self.source_ids(kind)
        if look_id:
            look = (await self._request(client, "GET", f"/looks/{look_id}")).json()
            query = look.get("query") or {}
        elif query_id:
            query = (await self._request(client, "GET", f"/queries/{query_id}")).json()
        else:
            prefix = config.RECORD_KINDS[kind]
            raise ConfigurationError(f"{prefix}_LOOK_ID or {prefix}_QUERY_ID must be set")
        body = {k: query[k] for k in _QUERY_FIELDS if query.get(k) is not None}
        self._query_cache[kind] = body
        return body

    async def run(self, kind: str, filters: dict) -> List[dict]:
        """Run the saved query for `kind` with `filters` merged in; return raw rows."""
        try:
            async with self._client() as client:
                body = dict(await self._saved_query(client, kind))
                body["filters"] = {**(body.get("filters") or {}), **filters}
                body["limit"] = str(self.row_limit)
                response = await self._request(client, "POST", "/queries/run/json", json=body)
        except httpx.HTTPStatusError as e:
            raise UpstreamError(
                f"Analytics backend returned HTTP {e.response.status_code} for {kind}"
            ) from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"Analytics backend unreachable while fetching {kind}: {e}") from e
        return parse_looker_result(response.text)

    async def _unit_rows(self, kind: str, unit_id: str, days: int) -> List[dict]:
        since = window_start(days).isoformat()
        filters = {
            config.UNIT_FILTER_FIELD: str(unit_id),
            config.RECORD_DATE_FIELDS[kind]: f">={since}",
        }
        rows = await self.run(kind, filters)
        check_filter_integrity(rows, kind, str(unit_id), self.row_limit, self.sample_size)
        logger.debug(f"Fetched {len(rows)} {kind} rows for unit {unit_id} since {since}")
        return rows

    # ── Queries ──────────────────────────────────────────────────────────────

    async def fetch_visits(self, unit_id: str, days: int) -> List[VisitRecord]:
        rows = await self._unit_rows("visits", unit_id, days)
        return sorted((VisitRecord.from_row(r) for r in rows), key=_sort_key("completed_date"))

    async def fetch_downtimes(self, unit_id: str, days: int) -> List[DowntimeRecord]:
        rows = await self._unit_rows("downtimes", unit_id, days)
        return sorted((DowntimeRecord.from_row(r) for r in rows), key=_sort_key("start_time"))

    async def fetch_issues(self, unit_id: str, days: int) -> List[MaintenanceIssueRecord]:
        rows = await self._unit_rows("maintenance_issues", unit_id, days)
        return sorted((MaintenanceIssueRecord.from_row(r) for r in rows), key=_sort_key("completed_date"))

    async def fetch_parts_requests(self, unit_id: str, days: int) -> List[PartsRequestRecord]:
        rows = await self._unit_rows("parts_requests", unit_id, days)
        return sorted((PartsRequestRecord.from_row(r) for r in rows), key=_sort_key("requested_date"))

    async def fetch_buildings(self, country: Optional[str] = None) -> List[dict]:
        filters = {config.COUNTRY_FILTER_FIELD: country} if country else {}
        rows = await self.run("buildings", filters)
        return [
            {
                "id": str(pick(row, "id", "building.id", default="")),
                "name": str(pick(row, "name", "building.name", default="")),
                "address": pick(row, "address", "building.address", default=""),
                "country": pick(row, "country", "building.country_code", default=country or ""),
            }
            for row in rows
        ]

    async def fetch_units(self, building_id: str) -> List[dict]:
        rows = await self.run("units", {config.BUILDING_FILTER_FIELD: str(building_id)})
        return [
            {
                "id": str(pick(row, "id", "device.id", "unit.id", default="")),
                "name": str(pick(row, "name", "device.name", "unit.name", default="")),
                "buildingId": str(pick(row, "buildingId", "building.id", default=building_id)),
            }
            for row in rows
        ]
