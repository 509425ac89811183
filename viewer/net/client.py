from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx
from loguru import logger

from net.dedup import RequestDeduplicator
from net.errors import ApiError, NetworkError
from settings.config import ViewerSettings, load_settings


class ApiClient:
    """
    Thin JSON client over `httpx.AsyncClient`.

    - idempotent calls go through the request deduplicator
    - non-2xx responses raise `ApiError(status, data)`; 204 returns None
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        http: httpx.AsyncClient | None = None,
        dedup: RequestDeduplicator | None = None,
        settings: ViewerSettings | None = None,
    ):
        self.settings = settings or load_settings()
        self.base_url = (base_url or self.settings.api_base_url).rstrip("/")
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=self.settings.request_timeout_s)
        self.dedup = dedup or RequestDeduplicator()

    def resolve_url(self, path: str) -> str:
        normalized = path if path.startswith("/") else f"/{path}"
        return f"{self.base_url}{normalized}"

    async def request(
        self,
        path: str,
        *,
        method: str = "GET",
        params: dict[str, Any] | None = None,
        body: Any = None,
        headers: dict[str, str] | None = None,
        use_cache: bool | None = None,
    ) -> Any:
        method = method.upper()
        url = self.resolve_url(path)
        if params:
            url = str(httpx.URL(url, params=params))

        async def execute() -> Any:
            return await self._send(method, url, body, headers)

        return await self.dedup.call(method, url, body, execute, use_cache=use_cache)

    async def _send(
        self, method: str, url: str, body: Any, headers: dict[str, str] | None
    ) -> Any:
        req_headers = {"Accept": "application/json"}
        if body is not None:
            req_headers["Content-Type"] = "application/json"
        req_headers.update(headers or {})

        try:
            resp = await self.http.request(
                method,
                url,
                json=body if body is not None else None,
                headers=req_headers,
            )
        except httpx.HTTPError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise NetworkError(f"API request failed ({type(e).__name__})", data=str(e)) from e

        if not resp.is_success:
            raise ApiError(
                f"API request failed ({resp.status_code})",
                resp.status_code,
                _payload(resp),
            )
        if resp.status_code == 204 or not resp.content:
            return None
        content_type = resp.headers.get("content-type", "")
        if "application/json" in content_type:
            return resp.json()
        return resp.text

    async def fetch_health(self) -> dict[str, Any]:
        return await self.request("/api/health", use_cache=True)

    async def fetch_layers(self) -> Any:
        return await self.request("/v1/layers")

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()


def _payload(resp: httpx.Response) -> Any:
    text = resp.text
    if not text:
        return None
    try:
        return resp.json()
    except ValueError:
        return text


def quote_segment(value: str) -> str:
    return quote(str(value), safe="")
