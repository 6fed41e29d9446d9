from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import quote, unquote

import httpx

from ..config import Settings
from ..preview.acquisition import DEFAULT_MEDIA_TYPE, AcquiredPayload, DownloadedFile
from ..preview.errors import AcquisitionFailure


logger = logging.getLogger(__name__)

_FILENAME_STAR_RE = re.compile(r"filename\*\s*=\s*([^']*)'[^']*'([^;]+)", re.IGNORECASE)
_FILENAME_RE = re.compile(r'filename\s*=\s*(?:"([^"]*)"|([^;]+))', re.IGNORECASE)


def filename_from_disposition(value: str | None) -> str | None:
    header = str(value or "")
    m = _FILENAME_STAR_RE.search(header)
    if m:
        charset = (m.group(1) or "utf-8").strip() or "utf-8"
        try:
            return unquote(m.group(2).strip(), encoding=charset)
        except LookupError:
            return unquote(m.group(2).strip())
    m = _FILENAME_RE.search(header)
    if m:
        name = (m.group(1) if m.group(1) is not None else m.group(2) or "").strip()
        return name or None
    return None


class StorageServiceClient:
    """Talks to the storage service's file endpoints on behalf of one caller.

    ``fetch_bytes`` uses the transport configured in settings: ``base64`` reads the
    JSON preview-data envelope, ``binary`` reads the raw download body.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._token = (token or "").strip() or None
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        if not self._token:
            return {}
        return {"Authorization": f"Bearer {self._token}"}

    def _timeout(self) -> httpx.Timeout:
        t = max(1, int(self._settings.acquisition_timeout_seconds))
        return httpx.Timeout(t)

    async def _get(self, path: str) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self._settings.storage_base_url,
            headers=self._headers(),
            timeout=self._timeout(),
            transport=self._transport,
        ) as client:
            try:
                res = await client.get(path)
            except httpx.RequestError as e:
                logger.warning("storage service unreachable at %s: %s", self._settings.storage_base_url, e)
                raise AcquisitionFailure(detail=f"storage service unreachable: {e}") from e

        if res.status_code >= 400:
            raise AcquisitionFailure(detail=f"storage service error {res.status_code}")
        return res

    async def fetch_bytes(self, file_id: str) -> AcquiredPayload:
        if self._settings.acquisition_transport == "binary":
            res = await self._get(f"/files/download/{quote(file_id, safe='')}")
            return AcquiredPayload(
                encoded_payload=res.content,
                media_type=res.headers.get("content-type") or DEFAULT_MEDIA_TYPE,
                encoding="binary",
                filename=filename_from_disposition(res.headers.get("content-disposition")),
            )

        res = await self._get(f"/files/preview-data/{quote(file_id, safe='')}")
        try:
            body: Any = res.json()
        except ValueError as e:
            raise AcquisitionFailure(detail="preview-data response is not JSON") from e
        if not isinstance(body, dict):
            raise AcquisitionFailure(detail="preview-data response is not an object")
        if body.get("code") != 200:
            raise AcquisitionFailure(detail=str(body.get("message") or f"preview-data code {body.get('code')}"))
        result = body.get("result")
        if not isinstance(result, dict) or not isinstance(result.get("data"), str):
            raise AcquisitionFailure(detail="preview-data response has no result")
        return AcquiredPayload(
            encoded_payload=result["data"],
            media_type=str(result.get("contentType") or DEFAULT_MEDIA_TYPE),
            encoding="base64",
            filename=str(result.get("fileName") or "") or None,
        )

    async def download(self, file_id: str) -> DownloadedFile:
        res = await self._get(f"/files/download/{quote(file_id, safe='')}")
        return DownloadedFile(
            content=res.content,
            media_type=res.headers.get("content-type") or DEFAULT_MEDIA_TYPE,
            filename=filename_from_disposition(res.headers.get("content-disposition")) or file_id,
        )
