"""
Session registry: the only shared mutable state of the real-time hub.

Owns two indices, ``session id -> Session`` and ``room -> {session id}``, and
mutates them only under one asyncio lock. Readers get snapshots (lists), so
fan-out never iterates a set another task is changing.
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

import structlog

from ..observability import ws_dropped_total, ws_sessions

log = structlog.get_logger(__name__)



def category_room(name: str) -> str:
    return f"category:{name.lower()}"


def source_room(name: str) -> str:
    return f"source:{name.lower()}"


def interest_room(name: str) -> str:
    return f"interest:{name.lower()}"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


def article_room(article_id: str) -> str:
    return f"article:{article_id}"


@dataclass(eq=False)
class Session:
    id: str
    outbox: asyncio.Queue
    user_id: Optional[str] = None
    username: Optional[str] = None
    interests: List[str] = field(default_factory=list)
    rooms: Set[str] = field(default_factory=set)

    @property
    def authenticated(self) -> bool:
        return self.user_id is not None

    def deliver(self, event: str, data: Dict[str, Any]) -> bool:
        """Queue one outbound event; a full outbox drops it (fire-and-forget delivery)."""
        try:
            self.outbox.put_nowait((event, data))
            return True
        except asyncio.QueueFull:
            ws_dropped_total.inc()
            log.warning("ws_outbox_full", session_id=self.id, event_name=event)
            return False


class SessionRegistry:
    def __init__(self, outbox_size: int = 256):
        self.outbox_size = outbox_size
        self._sessions: Dict[str, Session] = {}
        self._rooms: Dict[str, Set[str]] = {}
        self._lock = asyncio.Lock()
        self._open = False

    async def init(self):
        async with self._lock:
            self._open = True

    async def shutdown(self) -> List[Session]:
        """Drop every session; each outbox gets a None sentinel so its pump exits."""
        async with self._lock:
            self._open = False
            sessions = list(self._sessions.values())
            self._sessions.clear()
            self._rooms.clear()
        for s in sessions:
            s.rooms.clear()
            try:
                s.outbox.put_nowait(None)
            except asyncio.QueueFull:
                pass
        ws_sessions.set(0)
        return sessions

    @property
    def is_open(self) -> bool:
        return self._open

    async def add(self) -> Session:
        session = Session(id=uuid.uuid4().hex, outbox=asyncio.Queue(maxsize=self.outbox_size))
        async with self._lock:
            if not self._open:
                raise RuntimeError("session registry is not running")
            self._sessions[session.id] = session
            ws_sessions.set(len(self._sessions))
        return session

    async def remove(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is None:
                return None
            for room in session.rooms:
                self._discard(room, session_id)
            session.rooms.clear()
            ws_sessions.set(len(self._sessions))
        return session

    async def join(self, session_id: str, room: str) -> bool:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            self._rooms.setdefault(room, set()).add(session_id)
            session.rooms.add(room)
        return True

    async def leave(self, session_id: str, room: str) -> bool:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None or room not in session.rooms:
                return False
            session.rooms.discard(room)
            self._discard(room, session_id)
        return True

    async def authenticate(
        self, session_id: str, user_id: str, username: str, interests: List[str]
    ) -> Optional[Session]:
        """Bind an identity; joins the per-user room and one room per interest."""
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.authenticated:
                # re-auth as someone else: drop the previous identity's rooms
                stale = {user_room(session.user_id)} | {interest_room(i) for i in session.interests}
                for room in stale & session.rooms:
                    session.rooms.discard(room)
                    self._discard(room, session_id)
            session.user_id = user_id
            session.username = username
            session.interests = list(interests)
            for room in [user_room(user_id)] + [interest_room(i) for i in interests]:
                self._rooms.setdefault(room, set()).add(session_id)
                session.rooms.add(room)
        return session

    async def members(self, room: str) -> List[Session]:
        async with self._lock:
            return [self._sessions[sid] for sid in self._rooms.get(room, ()) if sid in self._sessions]

    async def all(self) -> List[Session]:
        async with self._lock:
            return list(self._sessions.values())

    async def get(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def sessions_for_user(self, user_id: str) -> List[Session]:
        return await self.members(user_room(user_id))

    async def online_by_interest(self, interest: str) -> List[Dict[str, str]]:
        wanted = interest.lower()
        async with self._lock:
            return [
                {"username": s.username, "userId": s.user_id, "sessionId": s.id}
                for s in self._sessions.values()
                if s.authenticated and wanted in {i.lower() for i in s.interests}
            ]

    def count(self) -> int:
        return len(self._sessions)

    def authenticated_count(self) -> int:
        return len({s.user_id for s in self._sessions.values() if s.authenticated})

    def rooms_of(self, session_id: str) -> Set[str]:
        session = self._sessions.get(session_id)
        return set(session.rooms) if session else set()

    def _discard(self, room: str, session_id: str):
        members = self._rooms.get(room)
        if members is None:
            return
        members.discard(session_id)
        if not members:
            del self._rooms[room]
