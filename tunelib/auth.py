from __future__ import annotations

import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import HTTPException, Request

from .config import AppConfig


ALGORITHM = "HS256"


def check_credentials(cfg: AppConfig, username: str, password: str) -> bool:
    user_ok = hmac.compare_digest(str(username or ""), cfg.admin_username)
    pass_ok = hmac.compare_digest(str(password or ""), cfg.admin_password)
    return user_ok and pass_ok


def create_token(cfg: AppConfig, username: str, now: Optional[datetime] = None) -> str:
    issued = now or datetime.now(timezone.utc)
    payload = {
        "username": username,
        "iat": issued,
        "exp": issued + timedelta(hours=cfg.token_ttl_hours),
    }
    return jwt.encode(payload, cfg.jwt_secret, algorithm=ALGORITHM)


def verify_token(cfg: AppConfig, token: str) -> Dict[str, Any]:
    """Decode a token; raises jwt.InvalidTokenError (incl. expiry) on failure."""
    return jwt.decode(token, cfg.jwt_secret, algorithms=[ALGORITHM])


def bearer_token(request: Request) -> str:
    auth = request.headers.get("authorization")
    if not auth:
        raise HTTPException(status_code=401, detail="missing token")
    parts = auth.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="invalid token")
    return parts[1]


def require_user(request: Request) -> Dict[str, Any]:
    """FastAPI dependency: the decoded token payload of the caller."""
    cfg: AppConfig = request.app.state.config
    token = bearer_token(request)
    try:
        return verify_token(cfg, token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="invalid token")
