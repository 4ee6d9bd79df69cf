"""Bearer-token check for the admin and realtime write endpoints."""
from typing import Any, Dict, Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import AuthError

log = structlog.get_logger(__name__)

bearer = HTTPBearer(auto_error=False)


def decode_token(token: str, secret: str, algorithm: str) -> Dict[str, Any]:
    """Claims of a valid token; raises AuthError otherwise"""
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.PyJWTError as e:
        raise AuthError("Invalid token") from e
    if not (claims.get("id") or claims.get("sub")):
        raise AuthError("Invalid token")
    return claims


async def require_auth(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> Dict[str, Any]:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token provided")
    settings = request.app.state.settings
    try:
        return decode_token(credentials.credentials, settings.JWT_SECRET, settings.JWT_ALGORITHM)
    except AuthError as e:
        log.warning("http_auth_rejected", path=request.url.path)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
