import itertools
import json
import typing
from collections import defaultdict

import httpx
import pytest
import pytest_asyncio

from coda_mapper import CodaMapper


API_PREFIX = "/apis/v1"


class FakeCoda:
    """In-memory stand-in for the rows and mutation status endpoints."""

    def __init__(self) -> None:
        self.tables: typing.DefaultDict[str, typing.Dict[str, dict]] = defaultdict(dict)
        self.requests: typing.List[httpx.Request] = []
        self.mutation_statuses: typing.Dict[str, typing.List[typing.Any]] = {}
        self._ids = itertools.count(1)

    @staticmethod
    def reference(table_id: str, row_id: str) -> typing.Dict[str, typing.Any]:
        return {
            "@context": "http://schema.org",
            "@type": "StructuredValue",
            "additionalType": "row",
            "name": "name",
            "rowId": row_id,
            "tableId": table_id,
            "tableUrl": "url",
            "url": "url",
        }

    def add_row(self, table_id: str, row_id: str, values: dict, **meta: typing.Any) -> dict:
        row = {"id": row_id, "type": "row", "values": values, **meta}
        self.tables[table_id][row_id] = row
        return row

    def calls(self, method: str, path: str) -> typing.List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == API_PREFIX + path]

    def body(self, request: httpx.Request) -> typing.Any:
        return json.loads(request.content)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path[len(API_PREFIX) :].strip("/").split("/")

        if parts[0] == "mutationStatus":
            return self._mutation_status(parts[1])

        table_id = parts[3]
        row_id = parts[5] if len(parts) > 5 else None
        if request.method == "GET" and row_id:
            row = self.tables[table_id].get(row_id)
            if row is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=row)
        if request.method == "GET":
            return self._list(table_id, request.url.params)
        if request.method == "POST":
            return self._insert(table_id, json.loads(request.content))
        if request.method == "PUT":
            return self._update(table_id, row_id, json.loads(request.content))
        if request.method == "DELETE":
            for deleted in json.loads(request.content)["rowIds"]:
                self.tables[table_id].pop(deleted, None)
            return httpx.Response(202, json={"requestId": self._request_id()})
        return httpx.Response(405)

    def _request_id(self) -> str:
        return f"request-{next(self._ids)}"

    def _list(self, table_id: str, params: httpx.QueryParams) -> httpx.Response:
        rows = list(self.tables[table_id].values())
        if "query" in params:
            column, _, raw = params["query"].partition(":")
            expected = json.loads(raw)
            rows = [row for row in rows if row["values"].get(column.strip('"')) == expected]
        offset = int(params.get("pageToken", 0))
        limit = int(params["limit"])
        page = rows[offset : offset + limit]
        payload: typing.Dict[str, typing.Any] = {"items": page}
        if offset + limit < len(rows):
            payload["nextPageToken"] = str(offset + limit)
        return httpx.Response(200, json=payload)

    def _insert(self, table_id: str, body: dict) -> httpx.Response:
        key_columns = body.get("keyColumns")
        added = []
        for row in body["rows"]:
            values = {cell["column"]: cell["value"] for cell in row["cells"]}
            match = None
            if key_columns:
                match = next(
                    (
                        existing
                        for existing in self.tables[table_id].values()
                        if all(existing["values"].get(key) == values.get(key) for key in key_columns)
                    ),
                    None,
                )
            if match is not None:
                match["values"].update(values)
                continue
            row_id = f"i-{next(self._ids)}"
            self.add_row(table_id, row_id, values)
            added.append(row_id)
        payload: typing.Dict[str, typing.Any] = {"requestId": self._request_id()}
        if not key_columns:
            payload["addedRowIds"] = added
        return httpx.Response(202, json=payload)

    def _update(self, table_id: str, row_id: str, body: dict) -> httpx.Response:
        row = self.tables[table_id][row_id]
        for cell in body["row"]["cells"]:
            row["values"][cell["column"]] = cell["value"]
        return httpx.Response(202, json={"requestId": self._request_id(), "id": row_id})

    def _mutation_status(self, request_id: str) -> httpx.Response:
        script = self.mutation_statuses.get(request_id)
        step = script.pop(0) if script else True
        if step == 404:
            return httpx.Response(404, json={"message": "Not Found"})
        if isinstance(step, int) and not isinstance(step, bool):
            return httpx.Response(step, json={"message": "Error"})
        return httpx.Response(200, json={"completed": step})


@pytest.fixture()
def coda() -> FakeCoda:
    return FakeCoda()


@pytest_asyncio.fixture()
async def mapper(coda: FakeCoda) -> typing.AsyncGenerator[CodaMapper, None]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(coda.handler))
    async with CodaMapper("doc_id", "api_key", http_client=client, mutation_poll_interval=0.001) as mapper:
        yield mapper
    await client.aclose()
