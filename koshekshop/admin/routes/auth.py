import hmac
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from koshekshop import config
from koshekshop.admin.auth import generate_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginIn(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


def same(a: Optional[str], b: str) -> bool:
    return hmac.compare_digest((a or "").encode("utf-8"), b.encode("utf-8"))


@router.post("/login")
async def login(body: LoginIn):
    # один администратор из окружения
    if not same(body.username, config.ADMIN_USERNAME) or not same(body.password, config.ADMIN_PASSWORD):
        logger.warning(f"Failed admin login attempt for {body.username!r}")
        raise HTTPException(status_code=401, detail="invalid_credentials")

    logger.info(f"Admin {body.username} logged in")
    return {"token": generate_token(config.ADMIN_USERNAME)}
