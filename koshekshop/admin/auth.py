import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Header, HTTPException

from koshekshop import config

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


def generate_token(username: str, user_id: str = "1") -> str:
    """JWT для админ-панели, живёт JWT_EXPIRES_MINUTES минут"""
    payload = {
        "userId": user_id,
        "username": username,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=config.JWT_EXPIRES_MINUTES),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as e:
        logger.warning(f"JWT verification failed: {e}")
        return None

    if "userId" not in payload or "username" not in payload:
        return None
    return payload


async def require_auth(authorization: str = Header(None)) -> dict:
    """Dependency: Authorization: Bearer <token>"""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="unauthorized")

    payload = verify_token(authorization[7:])
    if not payload:
        raise HTTPException(status_code=401, detail="invalid_token")

    return payload
