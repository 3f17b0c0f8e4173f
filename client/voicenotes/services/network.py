"""HTTP client helpers for the VoiceNotes backend."""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

import httpx

from ..audio.types import AudioChunk
from ..errors import ApiError, ServerRejected, TransportFailure
from ..store.settings_store import SettingsStore


class ApiClient:
    def __init__(
        self,
        settings: SettingsStore,
        *,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings_store = settings
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict:
        api_key = self.settings_store.get().api_key
        return {"X-API-Key": api_key} if api_key else {}

    def _url(self, path: str) -> str:
        base = self.settings_store.get().server_url.rstrip("/")
        if not base:
            raise ApiError("Server URL missing")
        return f"{base}{path}"

    async def upload_chunk(self, chunk: AudioChunk) -> str:
        """POST one chunk to ``/chunk`` and return the storage key."""

        data = await self._post_file("/chunk", chunk.filename, chunk.payload, chunk.content_type, chunk.metadata())
        return self._require(data, "storageKey")

    async def upload_recording(self, payload: bytes, filename: str, content_type: str) -> str:
        data = await self._post_file("/chunk", filename, payload, content_type, {})
        return self._require(data, "storageKey")

    async def merge(self, keys: Sequence[str]) -> Dict[str, Any]:
        resp = await self._request("POST", "/merge", data={"keys": list(keys)})
        data = self._json(resp)
        self._require(data, "mergedKey")
        return data

    async def fetch_object(self, key: str) -> bytes:
        resp = await self._request("GET", f"/object/{key}")
        return resp.content

    async def delete_object(self, key: str) -> None:
        await self._request("DELETE", f"/object/{key}")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post_file(
        self,
        path: str,
        filename: str,
        payload: bytes,
        content_type: str,
        form: Dict[str, str],
    ) -> Dict[str, Any]:
        files = {"file": (filename, payload, content_type)}
        resp = await self._request("POST", path, files=files, data=form)
        return self._json(resp)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = self._url(path)
        try:
            resp = await self._client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as exc:
            raise TransportFailure(f"{method} {path} failed: {exc}") from exc
        if resp.status_code == 401:
            raise ServerRejected(401, "Unauthorized: check API key")
        if not resp.is_success:
            raise ServerRejected(resp.status_code, self._error_detail(resp))
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise ApiError(f"Invalid response: {exc}") from exc
        if not isinstance(data, dict):
            raise ApiError("Invalid response: expected a JSON object")
        return data

    @staticmethod
    def _require(data: Dict[str, Any], field: str) -> str:
        value = data.get(field)
        if not value:
            raise ApiError(f"Invalid response: '{field}' missing")
        return str(value)

    @staticmethod
    def _error_detail(resp: httpx.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text[:200]
        if isinstance(body, dict):
            detail = body.get("detail") or body.get("error")
            if detail:
                return str(detail)
        return resp.text[:200]
