from __future__ import annotations

import asyncio
import base64
import binascii
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Protocol

from .errors import AcquisitionFailure


PayloadEncoding = Literal["base64", "binary"]

DEFAULT_MEDIA_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class AcquiredPayload:
    encoded_payload: bytes | str
    media_type: str
    encoding: PayloadEncoding
    filename: str | None = None


@dataclass(frozen=True)
class DownloadedFile:
    content: bytes
    media_type: str
    filename: str


class AcquisitionPort(Protocol):
    async def fetch_bytes(self, file_id: str) -> AcquiredPayload: ...


class DownloadPort(Protocol):
    async def download(self, file_id: str) -> DownloadedFile: ...


def decode_payload(payload: AcquiredPayload) -> bytes:
    """Turn a transport payload into raw bytes, honouring the declared encoding."""
    if payload.encoding == "binary":
        if not isinstance(payload.encoded_payload, (bytes, bytearray)):
            raise AcquisitionFailure(detail="binary payload is not bytes")
        return bytes(payload.encoded_payload)

    if payload.encoding != "base64":
        raise AcquisitionFailure(detail=f"unknown payload encoding: {payload.encoding}")

    raw = payload.encoded_payload
    if isinstance(raw, (bytes, bytearray)):
        raw = bytes(raw).decode("ascii", errors="replace")
    text = "".join(str(raw).split())
    if text.startswith("data:") and "," in text:
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AcquisitionFailure(detail="malformed base64 payload") from e


def guess_media_type(name: str) -> str:
    return mimetypes.guess_type(name)[0] or DEFAULT_MEDIA_TYPE


class LocalFileAcquisitionPort:
    """Reads ``<root>/<file_id>``; serves both preview acquisition and downloads."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root).resolve()

    def _path(self, file_id: str) -> Path:
        name = str(file_id or "").strip()
        if not name:
            raise AcquisitionFailure(detail="empty file id")
        full = (self._root / name).resolve()
        try:
            full.relative_to(self._root)
        except ValueError:
            raise AcquisitionFailure(detail="file id escapes the files directory") from None
        return full

    async def _read(self, file_id: str) -> tuple[Path, bytes]:
        full = self._path(file_id)
        try:
            data = await asyncio.to_thread(full.read_bytes)
        except OSError as e:
            raise AcquisitionFailure(detail=f"cannot read {full.name}: {e.strerror or e}") from e
        return full, data

    async def fetch_bytes(self, file_id: str) -> AcquiredPayload:
        full, data = await self._read(file_id)
        return AcquiredPayload(
            encoded_payload=data,
            media_type=guess_media_type(full.name),
            encoding="binary",
            filename=full.name,
        )

    async def download(self, file_id: str) -> DownloadedFile:
        full, data = await self._read(file_id)
        return DownloadedFile(content=data, media_type=guess_media_type(full.name), filename=full.name)
