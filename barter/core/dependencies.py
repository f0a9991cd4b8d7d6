import os
import logging
from typing import Optional

import jwt
from dotenv import load_dotenv
from fastapi import Depends, HTTPException, WebSocket
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

load_dotenv()
logger = logging.getLogger(__name__)

security = HTTPBearer()

# Custom close codes (4000-4999 are free for applications)
WS_UNAUTHORIZED = 4401
WS_FORBIDDEN = 4403
WS_NOT_FOUND = 4404


class CurrentUser(BaseModel):
    """The caller's session, resolved once and shared by every view."""

    id: str
    email: Optional[str] = None
    access_token: str


def verify_token(token: str) -> dict:
    try:
        payload = jwt.decode(
            token,
            os.getenv("SUPABASE_JWT_SECRET"),
            algorithms=["HS256"],
            issuer=f"{os.getenv('PUBLIC_SUPABASE_URL')}/auth/v1",
            options={"verify_aud": False},
            leeway=60,
        )
        return payload

    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")

    except jwt.InvalidTokenError as e:
        logger.warning(f"jwt_verification_failed error={e}")
        raise HTTPException(status_code=401, detail="Invalid token")


def session_from_token(token: str) -> CurrentUser:
    payload = verify_token(token)

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    return CurrentUser(id=user_id, email=payload.get("email"), access_token=token)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    return session_from_token(credentials.credentials)


async def authenticate_websocket(websocket: WebSocket) -> Optional[CurrentUser]:
    """
    Resolve the session for a socket from its `?token=` query parameter.

    Browsers cannot set headers on a WebSocket handshake, so the access token
    travels in the query string. On failure the socket is closed with 4401
    and None is returned.
    """
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=WS_UNAUTHORIZED)
        return None

    try:
        return session_from_token(token)
    except HTTPException as exc:
        logger.info(f"ws_auth_rejected path={websocket.url.path} detail={exc.detail}")
        await websocket.close(code=WS_UNAUTHORIZED)
        return None


def get_realtime(websocket: WebSocket):
    """Realtime client opened in the application lifespan, or None."""
    return getattr(websocket.app.state, "realtime", None)
