from __future__ import annotations

import json

import httpx
import pytest

from results_sync.domain.entities.sync_models import RecordUpdate
from results_sync.infrastructure.external.airtable.airtable_client import (
    AirtableClient,
    AirtableCredentials,
    AirtableTableConfig,
)
from results_sync.infrastructure.external.airtable.snapshot_reader import SnapshotReader
from results_sync.shared.exceptions.sync import DestinationApiError, SnapshotReadError


def _client(handler, **kwargs) -> AirtableClient:
    return AirtableClient(
        AirtableCredentials(token="tok", base_id="app123"),
        AirtableTableConfig(table_name="Results export", key_field="ID"),
        transport=httpx.MockTransport(handler),
        min_backoff_s=0,
        max_backoff_s=0,
        **kwargs,
    )


def _paged_handler(pages):
    """Sirve pages[i] según el offset recibido ('' para la primera)."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        offset = request.url.params.get("offset", "")
        seen.append(request)
        return httpx.Response(200, json=pages[offset])

    return handler, seen


@pytest.mark.asyncio
async def test_list_all_follows_offset_pages() -> None:
    handler, seen = _paged_handler(
        {
            "": {"records": [{"id": "rec1", "fields": {"ID": 1}}], "offset": "itr2"},
            "itr2": {"records": [{"id": "rec2", "fields": {"ID": 2}}], "offset": "itr3"},
            "itr3": {"records": [{"id": "rec3", "fields": {}}]},
        }
    )
    async with _client(handler) as client:
        records = await client.list_all(fields=["ID"])

    assert [r.record_id for r in records] == ["rec1", "rec2", "rec3"]
    assert len(seen) == 3
    assert seen[0].url.params.get_list("fields[]") == ["ID"]
    assert seen[0].url.path.endswith("/app123/Results export")
    assert seen[0].headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_record_without_id_fails_loudly() -> None:
    handler, _ = _paged_handler({"": {"records": [{"fields": {"ID": 1}}]}})
    async with _client(handler) as client:
        with pytest.raises(DestinationApiError):
            await client.list_all()


@pytest.mark.asyncio
async def test_create_many_sends_typecast() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"records": [{"id": "recN1"}, {"id": "recN2"}]})

    async with _client(handler) as client:
        ids = await client.create_many([{"ID": 1}, {"ID": 2}])

    assert ids == ["recN1", "recN2"]
    assert bodies == [{"records": [{"fields": {"ID": 1}}, {"fields": {"ID": 2}}], "typecast": True}]


@pytest.mark.asyncio
async def test_update_many_sends_ids_and_typecast() -> None:
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"records": []})

    async with _client(handler) as client:
        await client.update_many([RecordUpdate(record_id="rec1", fields={"Status": "paused"})])

    assert bodies == [{"records": [{"id": "rec1", "fields": {"Status": "paused"}}], "typecast": True}]


@pytest.mark.asyncio
async def test_delete_many_uses_records_params() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"records": []})

    async with _client(handler) as client:
        await client.delete_many(["rec1", "rec2"])
        await client.delete_many([])

    assert len(seen) == 1
    assert seen[0].method == "DELETE"
    assert seen[0].url.params.get_list("records[]") == ["rec1", "rec2"]


@pytest.mark.asyncio
async def test_batch_limit_is_enforced_before_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no debería llamar a la API")

    async with _client(handler) as client:
        with pytest.raises(ValueError):
            await client.delete_many([f"rec{i}" for i in range(11)])


@pytest.mark.asyncio
async def test_rate_limit_is_retried_with_retry_after() -> None:
    responses = [
        httpx.Response(429, headers={"Retry-After": "0"}, json={}),
        httpx.Response(200, json={"records": [{"id": "recN"}]}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        return responses.pop(0)

    async with _client(handler) as client:
        ids = await client.create_many([{"ID": 1}])

    assert ids == ["recN"]
    assert responses == []


@pytest.mark.asyncio
async def test_create_is_not_retried_on_timeout() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ReadTimeout("timeout", request=request)

    async with _client(handler) as client:
        with pytest.raises(DestinationApiError):
            await client.create_many([{"ID": 1}])

    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_raised() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(503, text="unavailable")

    async with _client(handler, max_retries=2) as client:
        with pytest.raises(DestinationApiError) as exc_info:
            await client.update_many([RecordUpdate(record_id="rec1", fields={})])

    assert len(attempts) == 3
    assert exc_info.value.status_code == 503


@pytest.mark.asyncio
async def test_client_errors_are_not_retried() -> None:
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(422, json={"error": {"type": "INVALID_VALUE_FOR_COLUMN"}})

    async with _client(handler) as client:
        with pytest.raises(DestinationApiError):
            await client.update_many([RecordUpdate(record_id="rec1", fields={})])

    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_non_json_success_body_raises_destination_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    async with _client(handler) as client:
        with pytest.raises(DestinationApiError) as exc_info:
            await client.create_many([{"ID": 1}])

    assert exc_info.value.status_code == 200


class TestSnapshotReader:

    @pytest.mark.asyncio
    async def test_builds_keyed_snapshot_with_orphans(self) -> None:
        handler, _ = _paged_handler(
            {
                "": {
                    "records": [
                        {"id": "rec1", "fields": {"ID": 101}},
                        {"id": "rec2", "fields": {"ID": 102.0}},
                    ],
                    "offset": "p2",
                },
                "p2": {
                    "records": [
                        {"id": "rec3", "fields": {}},
                        {"id": "rec4", "fields": {"ID": "101"}},
                    ]
                },
            }
        )
        async with _client(handler) as client:
            snapshot = await SnapshotReader(client).load_snapshot()

        assert snapshot.by_key == {"101": "rec1", "102": "rec2"}
        assert snapshot.orphans == ["rec3", "rec4"]

    @pytest.mark.asyncio
    async def test_failed_page_aborts_snapshot(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params.get("offset"):
                return httpx.Response(403, json={"error": "NOT_AUTHORIZED"})
            return httpx.Response(200, json={"records": [{"id": "rec1", "fields": {"ID": 1}}], "offset": "p2"})

        async with _client(handler) as client:
            with pytest.raises(SnapshotReadError):
                await SnapshotReader(client).load_snapshot()

    @pytest.mark.asyncio
    async def test_non_json_page_aborts_snapshot(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="not json")

        async with _client(handler) as client:
            with pytest.raises(SnapshotReadError):
                await SnapshotReader(client).load_snapshot()
