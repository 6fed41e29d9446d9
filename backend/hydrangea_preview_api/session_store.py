from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass

from .preview.controller import PreviewController


logger = logging.getLogger(__name__)


@dataclass
class PreviewSession:
    session_id: str
    token: str | None
    controller: PreviewController
    created_at: float
    last_seen_at: float


class PreviewSessionStore:
    """Per-caller preview controllers with idle expiry and a size cap.

    Evicted or discarded sessions have their controller closed so decoded
    workbooks and object handles do not outlive the session.
    """

    def __init__(self, *, ttl_seconds: int, max_sessions: int) -> None:
        self._sessions: dict[str, PreviewSession] = {}
        self._lock = asyncio.Lock()
        self._ttl_seconds = ttl_seconds
        self._max_sessions = max_sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def _is_expired(self, st: PreviewSession, now: float) -> bool:
        if self._ttl_seconds <= 0:
            return False
        return (now - st.last_seen_at) > self._ttl_seconds

    def _evict_locked(self, session_id: str) -> None:
        st = self._sessions.pop(session_id, None)
        if st is not None:
            st.controller.close()

    def _prune_locked(self, now: float) -> None:
        if self._ttl_seconds > 0:
            expired = [sid for sid, st in self._sessions.items() if self._is_expired(st, now)]
            for sid in expired:
                logger.debug("preview session %s expired", sid)
                self._evict_locked(sid)

        if self._max_sessions > 0 and len(self._sessions) > self._max_sessions:
            # Evict least-recently-seen sessions
            by_last_seen = sorted(self._sessions.items(), key=lambda kv: kv[1].last_seen_at)
            for sid, _st in by_last_seen[: max(0, len(self._sessions) - self._max_sessions)]:
                self._evict_locked(sid)

    async def create(self, *, token: str | None, controller: PreviewController) -> PreviewSession:
        now = time.time()
        st = PreviewSession(
            session_id=uuid.uuid4().hex,
            token=token,
            controller=controller,
            created_at=now,
            last_seen_at=now,
        )
        async with self._lock:
            self._sessions[st.session_id] = st
            self._prune_locked(now)
        return st

    async def get(self, session_id: str, *, token: str | None) -> PreviewSession:
        now = time.time()
        async with self._lock:
            st = self._sessions.get(session_id)
            if not st:
                raise KeyError("session not found")
            if self._is_expired(st, now):
                self._evict_locked(session_id)
                raise KeyError("session expired")
            if st.token and st.token != token:
                raise PermissionError("session is not owned by current caller")
            st.last_seen_at = now
            return st

    async def discard(self, session_id: str, *, token: str | None) -> None:
        await self.get(session_id, token=token)
        async with self._lock:
            self._evict_locked(session_id)

    async def close_all(self) -> None:
        async with self._lock:
            for sid in list(self._sessions):
                self._evict_locked(sid)
