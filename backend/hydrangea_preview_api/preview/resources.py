from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable


logger = logging.getLogger(__name__)


@dataclass
class ObjectHandle:
    handle: str
    content: bytes
    media_type: str
    filename: str
    created_at: float = field(default_factory=time.time)


class ObjectHandleRegistry:
    """Revocable handles that let the display surface fetch direct-preview bytes.

    A handle stays resolvable until it is revoked; revoking twice is a no-op.
    """

    def __init__(self) -> None:
        self._objects: dict[str, ObjectHandle] = {}
        self._lock = threading.Lock()

    def create(self, content: bytes, *, media_type: str, filename: str) -> ObjectHandle:
        obj = ObjectHandle(handle=uuid.uuid4().hex, content=content, media_type=media_type, filename=filename)
        with self._lock:
            self._objects[obj.handle] = obj
        return obj

    def resolve(self, handle: str) -> ObjectHandle | None:
        with self._lock:
            return self._objects.get(str(handle or ""))

    def revoke(self, handle: str) -> bool:
        with self._lock:
            return self._objects.pop(str(handle or ""), None) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)


class TransientResourceSet:
    def __init__(self) -> None:
        self._releasers: list[Callable[[], None]] = []
        self._released = False

    @property
    def live(self) -> int:
        return 0 if self._released else len(self._releasers)

    @property
    def released(self) -> bool:
        return self._released

    def add(self, releaser: Callable[[], None]) -> None:
        if self._released:
            raise RuntimeError("resource set already released")
        self._releasers.append(releaser)

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        releasers, self._releasers = self._releasers, []
        # Newest first, so dependants go before what they were built from.
        for releaser in reversed(releasers):
            try:
                releaser()
            except Exception:
                logger.exception("transient resource release failed")
