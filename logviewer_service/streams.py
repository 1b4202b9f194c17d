from __future__ import annotations

import hashlib
import io
import threading
from dataclasses import dataclass, field

from logviewer_service.config import CHUNK_CEILING
from logviewer_service.errors import SessionBusy, SessionInvalid


def stream_token(path: str) -> str:
    return hashlib.md5(path.encode("utf-8")).hexdigest()


@dataclass
class ReadSession:
    token: str
    reader: io.StringIO
    lock: threading.Lock = field(default_factory=threading.Lock)


class StreamRegistry:
    """
    Buffered read sessions keyed by a path-derived token.

    Content is held in full and handed out line by line in chunks no larger
    than roughly chunk_ceiling characters. The session is dropped the first
    time a read finds nothing left. Unknown or dropped tokens raise
    SessionInvalid.
    """

    def __init__(self, chunk_ceiling: int = CHUNK_CEILING) -> None:
        self.chunk_ceiling = chunk_ceiling
        self._sessions: dict[str, ReadSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._sessions

    def open(self, path: str, content: str) -> str:
        token = stream_token(path)
        session = ReadSession(token=token, reader=io.StringIO(content))
        with self._lock:
            # reopening the same path replaces the live session
            self._sessions[token] = session
        return token

    def _lookup(self, token: str) -> ReadSession | None:
        with self._lock:
            return self._sessions.get(token)

    def read_chunk(self, token: str) -> str:
        session = self._lookup(token)
        if session is None:
            raise SessionInvalid(f"unknown stream {token}")
        if not session.lock.acquire(blocking=False):
            raise SessionBusy(f"stream {token} is already being read")
        try:
            # another reader may have drained or replaced it before we got the lock
            if self._lookup(token) is not session:
                raise SessionInvalid(f"stream {token} ended while waiting")
            parts: list[str] = []
            size = 0
            while size <= self.chunk_ceiling:
                line = session.reader.readline()
                if not line:
                    break
                if not line.endswith("\n"):
                    line += "\n"
                parts.append(line)
                size += len(line)
            chunk = "".join(parts)
            if not chunk:
                self._discard(session)
            return chunk
        finally:
            session.lock.release()

    def _discard(self, session: ReadSession) -> None:
        with self._lock:
            if self._sessions.get(session.token) is session:
                del self._sessions[session.token]
        session.reader.close()

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.reader.close()
