from __future__ import annotations

from pathlib import PurePosixPath
from typing import Literal


PreviewKind = Literal[
    "image",
    "pdf",
    "video",
    "audio",
    "plain-text",
    "tabular-document",
    "flow-document",
    "unsupported",
]

IMAGE: PreviewKind = "image"
PDF: PreviewKind = "pdf"
VIDEO: PreviewKind = "video"
AUDIO: PreviewKind = "audio"
TEXT: PreviewKind = "plain-text"
TABULAR: PreviewKind = "tabular-document"
FLOW: PreviewKind = "flow-document"
UNSUPPORTED: PreviewKind = "unsupported"

DIRECT_KINDS = frozenset({IMAGE, PDF, VIDEO, AUDIO})

PDF_MEDIA_TYPE = "application/pdf"

_TABULAR_SUFFIXES = {".xlsx", ".xlsm", ".xltx", ".xltm", ".xls"}
_TABULAR_TYPE_PREFIXES = (
    "application/vnd.openxmlformats-officedocument.spreadsheetml.",
    "application/vnd.ms-excel",
)

_FLOW_SUFFIXES = {".docx", ".docm", ".dotx", ".dotm", ".doc"}
_FLOW_TYPE_PREFIXES = (
    "application/vnd.openxmlformats-officedocument.wordprocessingml.",
    "application/msword",
    "application/vnd.ms-word",
)

_TEXT_MARKERS = ("json", "javascript", "html", "xml")


def normalize_media_type(media_type: str | None) -> str:
    value = str(media_type or "").split(";", 1)[0]
    return value.strip().lower()


def _suffix(name: str | None) -> str:
    value = str(name or "").strip()
    if not value:
        return ""
    return PurePosixPath(value.replace("\\", "/")).suffix.lower()


def classify(media_type: str | None, name: str | None = None) -> PreviewKind:
    """Pick the preview path for a file.

    Container formats are recognised by suffix as well as by declared type,
    because browsers and storage backends commonly report legacy Office files
    as ``application/octet-stream``.
    """
    mt = normalize_media_type(media_type)
    suffix = _suffix(name)

    if suffix in _TABULAR_SUFFIXES or mt.startswith(_TABULAR_TYPE_PREFIXES):
        return TABULAR
    if suffix in _FLOW_SUFFIXES or mt.startswith(_FLOW_TYPE_PREFIXES):
        return FLOW

    if mt.startswith("image/"):
        return IMAGE
    if mt == PDF_MEDIA_TYPE:
        return PDF
    if mt.startswith("video/"):
        return VIDEO
    if mt.startswith("audio/"):
        return AUDIO

    if mt.startswith("text/") or any(marker in mt for marker in _TEXT_MARKERS):
        return TEXT

    return UNSUPPORTED
