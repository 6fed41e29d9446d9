from __future__ import annotations

from typing import Literal
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel, Field

from ..config import Settings
from ..deps import build_ports, get_bearer_token, get_download_port, get_handles, get_sessions, get_settings
from ..preview.acquisition import DownloadedFile, DownloadPort
from ..preview.artifacts import FileDescriptor, Ready
from ..preview.controller import PreviewController
from ..preview.errors import AcquisitionFailure
from ..preview.flow import CSP_POLICY, IFRAME_SANDBOX, FlowDocument
from ..preview.resources import ObjectHandleRegistry
from ..session_store import PreviewSession, PreviewSessionStore


router = APIRouter(tags=["preview"])

_DOCUMENT_CSP = f"sandbox {IFRAME_SANDBOX}; {CSP_POLICY}"


class OpenRequest(BaseModel):
    id: str = Field(min_length=1, max_length=512)
    name: str = Field(default="", max_length=1024)
    media_type: str = Field(default="", max_length=255)
    size: int = Field(default=0, ge=0)


class SheetRequest(BaseModel):
    sheet_name: str = Field(min_length=1, max_length=255)


class DisplayErrorRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)
    file_id: str | None = Field(default=None, max_length=512)


class ZoomRequest(BaseModel):
    action: Literal["in", "out", "reset"]


def _object_url(settings: Settings, handle: str) -> str:
    return f"{settings.public_base_url}/api/preview/objects/{handle}"


def _disposition(kind: str, filename: str) -> str:
    name = filename or "download"
    ascii_name = name.encode("ascii", errors="ignore").decode("ascii").replace('"', "") or "download"
    return f"{kind}; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(name, safe='')}"


def _state_payload(session: PreviewSession, settings: Settings) -> dict:
    controller = session.controller
    data = {"session_id": session.session_id, **controller.to_dict(), "stats": controller.stats()}
    artifact = data.get("artifact")
    if isinstance(artifact, dict) and artifact.get("handle"):
        artifact["url"] = _object_url(settings, str(artifact["handle"]))
    return data


async def _session(sessions: PreviewSessionStore, session_id: str, token: str | None) -> PreviewSession:
    try:
        return await sessions.get(session_id, token=token)
    except KeyError:
        raise HTTPException(status_code=404, detail="session not found") from None
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e


def _file_response(file: DownloadedFile) -> Response:
    return Response(
        content=file.content,
        media_type=file.media_type,
        headers={"Content-Disposition": _disposition("attachment", file.filename)},
    )


@router.post("/preview/sessions")
async def create_session(
    settings: Settings = Depends(get_settings),
    token: str | None = Depends(get_bearer_token),
    handles: ObjectHandleRegistry = Depends(get_handles),
    sessions: PreviewSessionStore = Depends(get_sessions),
) -> dict:
    port, downloads = build_ports(settings, token)
    controller = PreviewController(port, handles, downloads=downloads)
    session = await sessions.create(token=token, controller=controller)
    return _state_payload(session, settings)


@router.get("/preview/sessions/{session_id}")
async def get_session(
    session_id: str,
    settings: Settings = Depends(get_settings),
    token: str | None = Depends(get_bearer_token),
    sessions: PreviewSessionStore = Depends(get_sessions),
) -> dict:
    session = await _session(sessions, session_id, token)
    return _state_payload(session, settings)


@router.post("/preview/sessions/{session_id}/open")
async def open_file(
    session_id: str,
    req: OpenRequest,
    settings: Settings = Depends(get_settings),
    token: str | None = Depends(get_bearer_token),
    sessions: PreviewSessionStore = Depends(get_sessions),
) -> dict:
    session = await _session(sessions, session_id, token)
    descriptor = FileDescriptor(id=req.id, name=req.name, media_type=req.media_type, size=req.size)
    await session.controller.open(descriptor)
    return _state_payload(session, settings)


@router.post("/preview/sessions/{session_id}/sheet")
async def switch_sheet(
    session_id: str,
    req: SheetRequest,
    settings: Settings = Depends(get_settings),
    token: str | None = Depends(get_bearer_token),
    sessions: PreviewSessionStore = Depends(get_sessions),
) -> dict:
    session = await _session(sessions, session_id, token)
    try:
        await session.controller.switch_sheet(req.sheet_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except KeyError:
        raise HTTPException(status_code=404, detail="sheet not found") from None
    return _state_payload(session, settings)


@router.post("/preview/sessions/{session_id}/display-error")
async def report_display_error(
    session_id: str,
    req: DisplayErrorRequest,
    settings: Settings = Depends(get_settings),
    token: str | None = Depends(get_bearer_token),
    sessions: PreviewSessionStore = Depends(get_sessions),
) -> dict:
    session = await _session(sessions, session_id, token)
    session.controller.on_display_error(req.reason, file_id=req.file_id)
    return _state_payload(session, settings)


@router.post("/preview/sessions/{session_id}/zoom")
async def zoom(
    session_id: str,
    req: ZoomRequest,
    token: str | None = Depends(get_bearer_token),
    sessions: PreviewSessionStore = Depends(get_sessions),
) -> dict:
    session = await _session(sessions, session_id, token)
    controller = session.controller
    if req.action == "in":
        level = controller.zoom_in()
    elif req.action == "out":
        level = controller.zoom_out()
    else:
        level = controller.reset_zoom()
    return {"zoom": level}


@router.post("/preview/sessions/{session_id}/close")
async def close_preview(
    session_id: str,
    settings: Settings = Depends(get_settings),
    token: str | None = Depends(get_bearer_token),
    sessions: PreviewSessionStore = Depends(get_sessions),
) -> dict:
    session = await _session(sessions, session_id, token)
    session.controller.close()
    return _state_payload(session, settings)


@router.delete("/preview/sessions/{session_id}")
async def delete_session(
    session_id: str,
    token: str | None = Depends(get_bearer_token),
    sessions: PreviewSessionStore = Depends(get_sessions),
) -> dict:
    try:
        await sessions.discard(session_id, token=token)
    except KeyError:
        raise HTTPException(status_code=404, detail="session not found") from None
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e)) from e
    return {"ok": True}


@router.get("/preview/sessions/{session_id}/document")
async def flow_document(
    session_id: str,
    token: str | None = Depends(get_bearer_token),
    sessions: PreviewSessionStore = Depends(get_sessions),
) -> HTMLResponse:
    session = await _session(sessions, session_id, token)
    state = session.controller.state
    if not isinstance(state, Ready) or not isinstance(state.artifact, FlowDocument):
        raise HTTPException(status_code=404, detail="no document is open")
    return HTMLResponse(
        state.artifact.standalone(),
        headers={"Content-Security-Policy": _DOCUMENT_CSP, "X-Content-Type-Options": "nosniff"},
    )


@router.get("/preview/sessions/{session_id}/download")
async def download_current(
    session_id: str,
    token: str | None = Depends(get_bearer_token),
    sessions: PreviewSessionStore = Depends(get_sessions),
) -> Response:
    session = await _session(sessions, session_id, token)
    try:
        file = await session.controller.download()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except AcquisitionFailure as e:
        raise HTTPException(status_code=502, detail=e.reason) from e
    return _file_response(file)


@router.get("/preview/objects/{handle}")
async def object_content(
    handle: str,
    handles: ObjectHandleRegistry = Depends(get_handles),
) -> Response:
    obj = handles.resolve(handle)
    if obj is None:
        raise HTTPException(status_code=404, detail="object not found")
    return Response(
        content=obj.content,
        media_type=obj.media_type,
        headers={
            "Content-Disposition": _disposition("inline", obj.filename),
            "Cache-Control": "no-store",
            "X-Content-Type-Options": "nosniff",
        },
    )


@router.get("/preview/files/{file_id}/download")
async def download_file(
    file_id: str,
    downloads: DownloadPort = Depends(get_download_port),
) -> Response:
    try:
        file = await downloads.download(file_id)
    except AcquisitionFailure as e:
        raise HTTPException(status_code=502, detail=e.reason) from e
    return _file_response(file)
