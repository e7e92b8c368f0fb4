import json
import logging
import typing

import httpx

from coda_mapper.config import MapperSettings

logger = logging.getLogger(__name__)

Row = typing.Dict[str, typing.Any]
Cell = typing.Dict[str, typing.Any]


class CodaClient:
    def __init__(self, settings: MapperSettings, http_client: typing.Optional[httpx.AsyncClient] = None) -> None:
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=settings.timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _rows_url(self, table_id: str, row_id: typing.Optional[str] = None) -> str:
        url = f"{self._settings.base_url}/docs/{self._settings.doc_id}/tables/{table_id}/rows"
        return f"{url}/{row_id}" if row_id else url

    def _headers(self, latest: bool = False) -> typing.Dict[str, str]:
        headers = {"Authorization": f"Bearer {self._settings.api_key}", "Accept": "application/json"}
        if latest:
            headers["X-Coda-Doc-Version"] = "latest"
        return headers

    async def _request(self, method: str, url: str, latest: bool = False, **kwargs: typing.Any) -> httpx.Response:
        logger.debug(f"{method} {url}")
        response = await self._client.request(method, url, headers=self._headers(latest), **kwargs)
        response.raise_for_status()
        return response

    async def fetch_row_by_id(self, table_id: str, row_id: str, latest: bool = False) -> typing.Optional[Row]:
        params = {"useColumnNames": "false", "valueFormat": "rich"}
        try:
            response = await self._request("GET", self._rows_url(table_id, row_id), latest=latest, params=params)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                logger.debug(f"Row {row_id} not found in table {table_id}")
                return None
            raise
        return response.json()

    async def fetch_rows_by_query(
        self,
        table_id: str,
        column_id: typing.Optional[str] = None,
        value: typing.Any = None,
        page_token: typing.Optional[str] = None,
        limit: typing.Optional[int] = None,
        latest: bool = False,
    ) -> typing.Tuple[typing.List[Row], typing.Optional[str]]:
        params: typing.Dict[str, typing.Any] = {
            "useColumnNames": "false",
            "valueFormat": "rich",
            "limit": limit or self._settings.page_size,
        }
        if column_id is not None:
            params["query"] = f'"{column_id}":{json.dumps(value)}'
        if page_token:
            params["pageToken"] = page_token
        response = await self._request("GET", self._rows_url(table_id), latest=latest, params=params)
        payload = response.json()
        return payload.get("items", []), payload.get("nextPageToken")

    async def insert_rows(
        self, table_id: str, rows: typing.List[Row], key_columns: typing.Sequence[str] = ()
    ) -> typing.Dict[str, typing.Any]:
        body: typing.Dict[str, typing.Any] = {"rows": rows}
        if key_columns:
            body["keyColumns"] = list(key_columns)
        response = await self._request("POST", self._rows_url(table_id), json=body)
        return response.json()

    async def update_row(self, table_id: str, row_id: str, cells: typing.List[Cell]) -> typing.Dict[str, typing.Any]:
        response = await self._request("PUT", self._rows_url(table_id, row_id), json={"row": {"cells": cells}})
        return response.json()

    async def delete_rows(self, table_id: str, row_ids: typing.List[str]) -> typing.Dict[str, typing.Any]:
        response = await self._request("DELETE", self._rows_url(table_id), json={"rowIds": row_ids})
        return response.json()

    async def poll_mutation_status(self, request_id: str) -> typing.Dict[str, typing.Any]:
        response = await self._request("GET", f"{self._settings.base_url}/mutationStatus/{request_id}")
        return response.json()
