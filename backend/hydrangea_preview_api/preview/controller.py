from __future__ import annotations

import asyncio
import functools
import logging
from dataclasses import replace
from typing import Any

from .acquisition import AcquiredPayload, AcquisitionPort, DownloadedFile, DownloadPort, decode_payload
from .artifacts import (
    Failed,
    FileDescriptor,
    Idle,
    ImageSource,
    Loading,
    MediaSource,
    PdfSource,
    PreviewState,
    Ready,
    RenderableArtifact,
    TextBody,
    Unsupported,
)
from .classifier import (
    AUDIO,
    DIRECT_KINDS,
    FLOW,
    IMAGE,
    PDF,
    PDF_MEDIA_TYPE,
    TABULAR,
    TEXT,
    UNSUPPORTED,
    VIDEO,
    PreviewKind,
    classify,
    normalize_media_type,
)
from .errors import AcquisitionFailure, DecodeFailure, DisplaySurfaceFailure, PreviewError
from .flow import FlowRenderer
from .resources import ObjectHandleRegistry, TransientResourceSet
from .tabular import DecodedWorkbook, TabularDocument, TabularReconstructor


logger = logging.getLogger(__name__)

ZOOM_DEFAULT = 100
ZOOM_MIN = 25
ZOOM_MAX = 300
ZOOM_STEP = 25

DISPLAY_FAILURE_REASONS: dict[str, str] = {
    IMAGE: "Failed to load image",
    PDF: "Failed to load PDF",
    VIDEO: "Failed to load video",
    AUDIO: "Failed to load audio",
}


class _Selection:
    """Identity token for one ``open`` call; compared by ``is``."""

    __slots__ = ("descriptor",)

    def __init__(self, descriptor: FileDescriptor) -> None:
        self.descriptor = descriptor


def _decode_text(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("utf-8", errors="replace")


class PreviewController:
    """Owns the preview state of one session.

    Only the most recent ``open`` may install a result: acquisition and decode
    continuations check their selection token against the current one and drop
    themselves when superseded. Exactly one resource set is live at a time.
    """

    def __init__(
        self,
        port: AcquisitionPort,
        handles: ObjectHandleRegistry,
        *,
        downloads: DownloadPort | None = None,
        tabular: TabularReconstructor | None = None,
        flow: FlowRenderer | None = None,
    ) -> None:
        self._port = port
        self._handles = handles
        self._downloads = downloads
        self._tabular = tabular or TabularReconstructor()
        self._flow = flow or FlowRenderer()

        self._state: PreviewState = Idle()
        self._selection: _Selection | None = None
        self._resources: TransientResourceSet | None = None
        self._workbook: DecodedWorkbook | None = None
        self._zoom = ZOOM_DEFAULT

        self._acquisitions = 0
        self._releases = 0

    @property
    def state(self) -> PreviewState:
        return self._state

    @property
    def descriptor(self) -> FileDescriptor | None:
        return self._selection.descriptor if self._selection is not None else None

    @property
    def zoom(self) -> int:
        return self._zoom

    @property
    def download_available(self) -> bool:
        state = self._state
        if isinstance(state, Failed):
            return True
        return isinstance(state, Ready) and isinstance(state.artifact, Unsupported)

    def stats(self) -> dict[str, int]:
        return {
            "acquisitions": self._acquisitions,
            "releases": self._releases,
            "live_resources": self._resources.live if self._resources is not None else 0,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            **self._state.to_dict(),
            "zoom": self._zoom,
            "download_available": self.download_available,
        }

    # -- lifecycle -------------------------------------------------------

    def _release_current(self) -> None:
        resources, self._resources = self._resources, None
        self._workbook = None
        if resources is not None:
            resources.release()
            self._releases += 1

    async def open(self, descriptor: FileDescriptor) -> PreviewState:
        self._release_current()
        selection = _Selection(descriptor)
        self._selection = selection
        self._zoom = ZOOM_DEFAULT

        kind = classify(descriptor.media_type, descriptor.name)
        if kind == UNSUPPORTED:
            self._state = Ready(descriptor, Unsupported(media_type=descriptor.media_type))
            return self._state

        self._state = Loading(descriptor)
        self._acquisitions += 1
        try:
            payload = await self._port.fetch_bytes(descriptor.id)
            data = decode_payload(payload)
        except AcquisitionFailure as e:
            return self._fail(selection, e)
        except Exception as e:
            return self._fail(selection, AcquisitionFailure(detail=str(e)))

        if selection is not self._selection:
            logger.debug("discarding stale acquisition for %s", descriptor.id)
            return self._state

        resources = TransientResourceSet()
        try:
            artifact, workbook = await asyncio.to_thread(self._build, kind, descriptor, payload, data, resources)
        except PreviewError as e:
            resources.release()
            return self._fail(selection, e)
        except Exception as e:
            resources.release()
            return self._fail(selection, DecodeFailure(detail=str(e)))

        if selection is not self._selection:
            logger.debug("discarding stale decode for %s", descriptor.id)
            resources.release()
            return self._state

        self._resources = resources
        self._workbook = workbook
        self._state = Ready(descriptor, artifact)
        return self._state

    def _fail(self, selection: _Selection, failure: PreviewError) -> PreviewState:
        if selection is not self._selection:
            logger.debug("discarding stale failure for %s", selection.descriptor.id)
            return self._state
        logger.warning("preview of %s failed: %s", selection.descriptor.id, failure)
        self._resources = TransientResourceSet()
        self._state = Failed(selection.descriptor, failure)
        return self._state

    def _build(
        self,
        kind: PreviewKind,
        descriptor: FileDescriptor,
        payload: AcquiredPayload,
        data: bytes,
        resources: TransientResourceSet,
    ) -> tuple[RenderableArtifact, DecodedWorkbook | None]:
        media_type = normalize_media_type(descriptor.media_type)
        if not media_type or media_type == "application/octet-stream":
            media_type = normalize_media_type(payload.media_type) or media_type

        if kind in DIRECT_KINDS:
            obj = self._handles.create(data, media_type=media_type, filename=descriptor.name)
            resources.add(functools.partial(self._handles.revoke, obj.handle))
            if kind == IMAGE:
                return ImageSource(handle=obj.handle, media_type=media_type), None
            if kind == PDF:
                return PdfSource(handle=obj.handle, media_type=PDF_MEDIA_TYPE), None
            return MediaSource(handle=obj.handle, media_type=media_type, kind=kind), None

        if kind == TEXT:
            return TextBody(text=_decode_text(data)), None

        if kind == TABULAR:
            workbook = self._tabular.decode(data)
            resources.add(workbook.release)
            return workbook.document(), workbook

        if kind == FLOW:
            return self._flow.render(data), None

        raise DecodeFailure(detail=f"no renderer for {kind}")

    def close(self) -> PreviewState:
        self._release_current()
        self._selection = None
        self._zoom = ZOOM_DEFAULT
        self._state = Idle()
        return self._state

    # -- interactions ----------------------------------------------------

    async def switch_sheet(self, sheet_name: str) -> PreviewState:
        state = self._state
        workbook = self._workbook
        if not isinstance(state, Ready) or not isinstance(state.artifact, TabularDocument) or workbook is None:
            raise ValueError("no spreadsheet is open")
        if sheet_name not in workbook.sheet_names:
            raise KeyError(sheet_name)

        selection = self._selection
        try:
            grid = await asyncio.to_thread(workbook.render, sheet_name)
        except Exception:
            if selection is not self._selection:
                return self._state
            raise
        if selection is not self._selection:
            return self._state

        artifact = replace(state.artifact, active_sheet=sheet_name, grid=grid)
        self._state = Ready(state.descriptor, artifact)
        return self._state

    def on_display_error(self, reason: str | None = None, *, file_id: str | None = None) -> PreviewState:
        """Report that the client could not show the current artifact.

        Ignored unless the preview is Ready with a previewable artifact, and ignored
        when ``file_id`` names a file other than the one currently selected.
        """
        state = self._state
        if not isinstance(state, Ready) or isinstance(state.artifact, Unsupported):
            return state
        if file_id is not None and file_id != state.descriptor.id:
            logger.debug("discarding stale display error for %s", file_id)
            return state
        message = (reason or "").strip() or DISPLAY_FAILURE_REASONS.get(state.artifact.kind)
        self._state = Failed(state.descriptor, DisplaySurfaceFailure(message))
        return self._state

    def zoom_in(self) -> int:
        self._zoom = min(ZOOM_MAX, self._zoom + ZOOM_STEP)
        return self._zoom

    def zoom_out(self) -> int:
        self._zoom = max(ZOOM_MIN, self._zoom - ZOOM_STEP)
        return self._zoom

    def reset_zoom(self) -> int:
        self._zoom = ZOOM_DEFAULT
        return self._zoom

    async def download(self) -> DownloadedFile:
        descriptor = self.descriptor
        if descriptor is None:
            raise ValueError("no file selected")
        if self._downloads is None:
            raise ValueError("download is not available")
        return await self._downloads.download(descriptor.id)
