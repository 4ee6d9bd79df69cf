"""
Real-time hub: session lifecycle, authentication handshake, room membership
and the three emission primitives (room, everyone, one user).

Inbound client events arrive through ``handle(session, event, data)``;
outbound events are queued on the session's outbox and written to the socket
by that session's pump task.
"""
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ..auth import decode_token
from ..errors import AuthError
from . import notify
from .registry import (
    Session,
    SessionRegistry,
    article_room,
    category_room,
    interest_room,
    source_room,
    user_room,
)

logger = structlog.get_logger(__name__)

Handler = Callable[[Session, Dict[str, Any]], Awaitable[None]]


class RealtimeHub:
    def __init__(
        self,
        registry: SessionRegistry,
        user_store,
        jwt_secret: str,
        jwt_algorithm: str = "HS256",
    ):
        self.registry = registry
        self.users = user_store
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self._handlers: Dict[str, Handler] = {
            "authenticate": self._authenticate,
            "join_news_room": self._join_news_room,
            "leave_news_room": self._leave_news_room,
            "article_read": self._article_read,
            "article_bookmarked": self._article_bookmarked,
            "typing_start": self._typing_start,
            "typing_stop": self._typing_stop,
        }

    async def init(self):
        await self.registry.init()
        logger.info("realtime_hub_started")

    async def shutdown(self):
        sessions = await self.registry.shutdown()
        logger.info("realtime_hub_stopped", sessions=len(sessions))

    # ------------------------------------------------------------------
    # session lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> Session:
        session = await self.registry.add()
        logger.info("client_connected", session_id=session.id, total=self.registry.count())
        return session

    async def disconnect(self, session: Session):
        removed = await self.registry.remove(session.id)
        if removed is None:
            return
        if removed.authenticated:
            # other tabs of the same user keep them online
            if not await self.registry.sessions_for_user(removed.user_id):
                await notify.broadcast_user_status(self, removed.user_id, "offline")
            logger.info("user_disconnected", session_id=removed.id, username=removed.username)
        else:
            logger.info("client_disconnected", session_id=removed.id)

    async def handle(self, session: Session, event: str, data: Optional[Dict[str, Any]]):
        handler = self._handlers.get(event)
        if handler is None:
            logger.debug("unknown_client_event", session_id=session.id, event_name=event)
            return
        await handler(session, data if isinstance(data, dict) else {})

    # ------------------------------------------------------------------
    # emission primitives
    # ------------------------------------------------------------------

    async def to_room(self, room: str, event: str, data: Dict[str, Any], exclude: Optional[str] = None) -> int:
        delivered = 0
        for s in await self.registry.members(room):
            if s.id != exclude and s.deliver(event, data):
                delivered += 1
        return delivered

    async def to_all(self, event: str, data: Dict[str, Any]) -> int:
        delivered = 0
        for s in await self.registry.all():
            if s.deliver(event, data):
                delivered += 1
        return delivered

    async def to_user(self, user_id: str, event: str, data: Dict[str, Any]) -> int:
        """Routes through the user's personal room; no live session means no-op."""
        return await self.to_room(user_room(str(user_id)), event, data)

    # ------------------------------------------------------------------
    # introspection
    # ------------------------------------------------------------------

    def connected_count(self) -> int:
        return self.registry.count()

    def authenticated_count(self) -> int:
        return self.registry.authenticated_count()

    async def online_users_by_interest(self, interest: str) -> List[Dict[str, str]]:
        return await self.registry.online_by_interest(interest)

    # ------------------------------------------------------------------
    # client event handlers
    # ------------------------------------------------------------------

    async def _authenticate(self, session: Session, data: Dict[str, Any]):
        token = data.get("token")
        if not token:
            session.deliver("auth_error", {"message": "No token provided"})
            return
        try:
            claims = decode_token(str(token), self.jwt_secret, self.jwt_algorithm)
        except AuthError as e:
            logger.warning("socket_auth_rejected", session_id=session.id, reason=str(e))
            session.deliver("auth_error", {"message": str(e)})
            return
        user_id = claims.get("id") or claims.get("sub")
        try:
            user = await self.users.get_user(str(user_id))
        except SQLAlchemyError as e:
            logger.error("socket_auth_user_lookup_failed", session_id=session.id, error=str(e))
            session.deliver("auth_error", {"message": "Authentication unavailable"})
            return
        if user is None:
            session.deliver("auth_error", {"message": "User not found"})
            return

        interests = list(user.interests or [])
        await self.registry.authenticate(session.id, str(user.id), user.username, interests)
        session.deliver("authenticated", {
            "user": {"id": str(user.id), "username": user.username, "interests": interests}
        })
        await notify.broadcast_user_status(self, str(user.id), "online")
        logger.info("user_authenticated", session_id=session.id, username=user.username)

    async def _join_news_room(self, session: Session, data: Dict[str, Any]):
        rooms = []
        if data.get("category"):
            rooms.append(category_room(str(data["category"])))
        if data.get("source"):
            rooms.append(source_room(str(data["source"])))
        if data.get("articleId"):
            rooms.append(article_room(str(data["articleId"])))
        for room in rooms:
            if await self.registry.join(session.id, room):
                session.deliver("joined_room", {"room": room})

    async def _leave_news_room(self, session: Session, data: Dict[str, Any]):
        if data.get("category"):
            await self.registry.leave(session.id, category_room(str(data["category"])))
        if data.get("source"):
            await self.registry.leave(session.id, source_room(str(data["source"])))
        if data.get("articleId"):
            await self.registry.leave(session.id, article_room(str(data["articleId"])))

    async def _article_read(self, session: Session, data: Dict[str, Any]):
        if not session.authenticated or not data.get("category"):
            return
        await self.to_room(interest_room(str(data["category"])), "user_activity", {
            "type": "article_read",
            "user": session.username,
            "article": {"id": data.get("articleId"), "title": data.get("title")},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def _article_bookmarked(self, session: Session, data: Dict[str, Any]):
        if not session.authenticated:
            return
        await self.to_user(session.user_id, "bookmark_confirmation", {
            "articleId": data.get("articleId"),
            "title": data.get("title"),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    async def _typing_start(self, session: Session, data: Dict[str, Any]):
        await self._typing(session, data, "user_typing")

    async def _typing_stop(self, session: Session, data: Dict[str, Any]):
        await self._typing(session, data, "user_stopped_typing")

    async def _typing(self, session: Session, data: Dict[str, Any], event: str):
        if not session.authenticated or not data.get("articleId"):
            return
        article_id = str(data["articleId"])
        await self.to_room(
            article_room(article_id),
            event,
            {"username": session.username, "articleId": article_id},
            exclude=session.id,
        )
