from __future__ import annotations

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .config import Settings, load_settings
from .preview.acquisition import AcquisitionPort, DownloadPort, LocalFileAcquisitionPort
from .preview.resources import ObjectHandleRegistry
from .services.storage_client import StorageServiceClient
from .session_store import PreviewSessionStore


_bearer = HTTPBearer(auto_error=False)


def get_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    if isinstance(settings, Settings):
        return settings
    return load_settings()


def get_bearer_token(creds: HTTPAuthorizationCredentials | None = Depends(_bearer)) -> str | None:
    if creds is None or not creds.credentials:
        return None
    return creds.credentials.strip() or None


def get_handles(request: Request) -> ObjectHandleRegistry:
    return request.app.state.handles


def get_sessions(request: Request) -> PreviewSessionStore:
    return request.app.state.sessions


def build_ports(settings: Settings, token: str | None) -> tuple[AcquisitionPort, DownloadPort]:
    if settings.local_files_dir is not None:
        local = LocalFileAcquisitionPort(settings.local_files_dir)
        return local, local
    client = StorageServiceClient(settings, token=token)
    return client, client


def get_download_port(
    settings: Settings = Depends(get_settings),
    token: str | None = Depends(get_bearer_token),
) -> DownloadPort:
    return build_ports(settings, token)[1]
