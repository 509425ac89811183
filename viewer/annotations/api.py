from __future__ import annotations

from typing import Any, Protocol

from annotations.records import normalize_annotation_list, normalize_envelope
from annotations.types import AnnotationEnvelope, AnnotationRecord
from catalog.normalize import pick_string
from net.client import ApiClient, quote_segment


class AnnotationStore(Protocol):
    """
    What the sync engine needs from the remote annotation store.
    """

    async def fetch_annotations(self, params: dict[str, Any]) -> list[AnnotationRecord]: ...

    async def query_annotations(self, payload: dict[str, Any]) -> AnnotationEnvelope: ...

    async def create_annotations(self, payload: dict[str, Any]) -> AnnotationEnvelope: ...

    async def delete_annotation(self, annotation_id: str) -> None: ...


class AnnotationApi:
    """
    `/v1/annotations` endpoints on top of `ApiClient`.
    """

    def __init__(self, client: ApiClient, *, delete_secret: str | None = None):
        self.client = client
        self.delete_secret = delete_secret if delete_secret is not None else client.settings.delete_secret

    async def fetch_annotations(self, params: dict[str, Any]) -> list[AnnotationRecord]:
        clean = {k: v for k, v in params.items() if v is not None and str(v).strip() != ""}
        data = await self.client.request("/v1/annotations", params=clean)
        return normalize_annotation_list(data)

    async def query_annotations(self, payload: dict[str, Any]) -> AnnotationEnvelope:
        data = await self.client.request(
            "/v1/annotations/query", method="POST", body=payload, use_cache=False
        )
        return normalize_envelope(data)

    async def create_annotations(self, payload: dict[str, Any]) -> AnnotationEnvelope:
        data = await self.client.request(
            "/v1/annotations", method="POST", body=payload, use_cache=False
        )
        return normalize_envelope(data)

    async def delete_annotation(self, annotation_id: str, *, secret: str | None = None) -> None:
        resolved = pick_string(secret, self.delete_secret)
        params = {"secret": resolved} if resolved else None
        await self.client.request(
            f"/v1/annotations/{quote_segment(annotation_id)}",
            method="DELETE",
            params=params,
            use_cache=False,
        )
