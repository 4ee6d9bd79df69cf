from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
import structlog

from ..auth import require_auth
from ..hub import notify
from ..schema import AnalyticsUpdateRequest, BroadcastNewsRequest, NotifyUserRequest

router = APIRouter(prefix="/realtime", tags=["realtime"])
log = structlog.get_logger(__name__)


@router.post("/broadcast-news", dependencies=[Depends(require_auth)])
async def broadcast_news(req: BroadcastNewsRequest, request: Request):
    """`high` priority goes out as a global breaking alert; anything else to the article's rooms."""
    article = await request.app.state.article_store.get(req.articleId)
    if article is None:
        raise HTTPException(status_code=404, detail="Article not found")
    hub = request.app.state.hub
    if req.priority == "high":
        await notify.send_breaking_news(hub, article, priority=req.priority)
    else:
        await notify.broadcast_new_article(hub, article)
    return {"success": True, "message": "News broadcasted successfully"}


@router.post("/notify-user", dependencies=[Depends(require_auth)])
async def notify_user(req: NotifyUserRequest, request: Request):
    delivered = await notify.send_user_notification(
        request.app.state.hub, req.userId, req.notification.model_dump(exclude_none=True)
    )
    return {"success": True, "delivered": delivered}


@router.post("/analytics-update", dependencies=[Depends(require_auth)])
async def analytics_update(req: AnalyticsUpdateRequest, request: Request):
    await notify.broadcast_analytics(request.app.state.hub, req.data)
    return {"success": True, "message": "Analytics update broadcasted"}


@router.get("/online-users/{interest}")
async def online_users(interest: str, request: Request):
    users = await request.app.state.hub.online_users_by_interest(interest)
    return {"interest": interest, "onlineUsers": users, "count": len(users)}


@router.get("/status")
async def status(request: Request):
    hub = request.app.state.hub
    return {
        "status": "active",
        "connectedUsers": hub.connected_count(),
        "authenticatedUsers": hub.authenticated_count(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
