"""Bearer-token helpers shared by the assessment routes.

Tokens are issued by the registration service; here they are only decoded
and resolved to the caller's agent record.
"""

import jwt
import aiosqlite
from datetime import datetime, timedelta, timezone
from fastapi import HTTPException, Request

from app.config import settings
from app.db import assessments as repo

JWT_SECRET = settings.jwt_secret
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = 72


def create_token(user_id: int, email: str) -> str:
    payload = {
        "sub": str(user_id),
        "email": email,
        "exp": datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRY_HOURS),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


async def get_current_agent(request: Request, db: aiosqlite.Connection) -> dict:
    """Resolve the Bearer token to the caller's agent row, or raise 401."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")

    token = auth_header.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Empty token")

    payload = decode_token(token)
    try:
        user_id = int(payload["sub"])
    except (KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")

    agent = await repo.get_agent_by_user_id(db, user_id)
    if not agent:
        raise HTTPException(status_code=401, detail="Agent profile not found")
    return agent
