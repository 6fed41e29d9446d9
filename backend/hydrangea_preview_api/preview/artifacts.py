from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Union

from .classifier import IMAGE, PDF, TEXT, UNSUPPORTED, VIDEO
from .errors import PreviewError
from .flow import FlowDocument
from .markup import escape_text
from .tabular import TabularDocument


@dataclass(frozen=True)
class FileDescriptor:
    id: str
    name: str
    media_type: str
    size: int = 0

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "media_type": self.media_type, "size": self.size}


@dataclass(frozen=True)
class ImageSource:
    kind: ClassVar[str] = IMAGE

    handle: str
    media_type: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "handle": self.handle, "media_type": self.media_type}


@dataclass(frozen=True)
class PdfSource:
    kind: ClassVar[str] = PDF

    handle: str
    media_type: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "handle": self.handle, "media_type": self.media_type}


@dataclass(frozen=True)
class MediaSource:
    handle: str
    media_type: str
    kind: str = VIDEO

    def to_dict(self) -> dict:
        return {"kind": self.kind, "handle": self.handle, "media_type": self.media_type}


@dataclass(frozen=True)
class TextBody:
    kind: ClassVar[str] = TEXT

    text: str

    @property
    def markup(self) -> str:
        return escape_text(self.text)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "text": self.text, "html": self.markup}


@dataclass(frozen=True)
class Unsupported:
    kind: ClassVar[str] = UNSUPPORTED

    media_type: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "media_type": self.media_type, "download_available": True}


RenderableArtifact = Union[ImageSource, PdfSource, MediaSource, TextBody, TabularDocument, FlowDocument, Unsupported]


@dataclass(frozen=True)
class Idle:
    status: ClassVar[str] = "idle"

    def to_dict(self) -> dict:
        return {"status": self.status}


@dataclass(frozen=True)
class Loading:
    status: ClassVar[str] = "loading"

    descriptor: FileDescriptor

    def to_dict(self) -> dict:
        return {"status": self.status, "file": self.descriptor.to_dict()}


@dataclass(frozen=True)
class Ready:
    status: ClassVar[str] = "ready"

    descriptor: FileDescriptor
    artifact: RenderableArtifact

    def to_dict(self) -> dict:
        return {"status": self.status, "file": self.descriptor.to_dict(), "artifact": self.artifact.to_dict()}


@dataclass(frozen=True)
class Failed:
    status: ClassVar[str] = "failed"
    download_available: ClassVar[bool] = True

    descriptor: FileDescriptor
    failure: PreviewError

    @property
    def reason(self) -> str:
        return self.failure.reason

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "file": self.descriptor.to_dict(),
            "reason": self.reason,
            "error_kind": self.failure.kind,
            "download_available": self.download_available,
        }


PreviewState = Union[Idle, Loading, Ready, Failed]
