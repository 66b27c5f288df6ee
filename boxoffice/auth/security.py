import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from boxoffice.api.deps import AppSettings
from boxoffice.settings import Settings

logger = logging.getLogger(__name__)

BEARER = HTTPBearer(auto_error=False)

TOKEN_TYPE = "client_credentials"

def create_client_token(config: Settings, client_id: str, scopes: list[str], expires_minutes: int = 60) -> str:
    """Issues an operator token. Scopes are given without the app prefix."""
    if not config.JWT_SECRET:
        raise RuntimeError("JWT_SECRET not configured")
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    payload = {
        "sub": client_id,
        "type": TOKEN_TYPE,
        "scope": " ".join(f"{config.APP_ID}:{scope}" for scope in scopes),
        "exp": expire,
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)

def decode_token(config: Settings, token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])

def token_has_scope(config: Settings, claims: dict, scope: str) -> bool:
    granted = (claims.get("scope") or "").split()
    return f"{config.APP_ID}:{scope}" in granted

def _verify_token(config: Settings, token: str, scope: str) -> dict:
    if not config.JWT_SECRET:
        logger.error("JWT_SECRET not configured; rejecting operator request")
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        claims = decode_token(config, token)
    except jwt.PyJWTError as e:
        logger.info("Rejected operator token: %s", e)
        raise HTTPException(status_code=401, detail="Unauthorized")

    if claims.get("type") != TOKEN_TYPE:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not token_has_scope(config, claims, scope):
        raise HTTPException(status_code=403, detail=f"Missing scope {scope}")
    return claims

def require_scope(scope: str):
    """Dependency factory: bearer JWT carrying ``<APP_ID>:<scope>``."""

    async def dependency(
        config: AppSettings,
        credentials: Optional[HTTPAuthorizationCredentials] = Security(BEARER),
    ) -> dict:
        if credentials is None:
            raise HTTPException(status_code=401, detail="Unauthorized")
        return _verify_token(config, credentials.credentials, scope)

    return dependency

async def require_payment_sync(
    config: AppSettings,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(BEARER),
) -> dict:
    """
    ``sync:payments`` scope, or the legacy shared PAYMENT_SYNC_SECRET used by
    cron callers that predate operator tokens.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="Unauthorized")

    token = credentials.credentials
    legacy = config.PAYMENT_SYNC_SECRET
    if legacy and hmac.compare_digest(token.encode(), legacy.encode()):
        return {"sub": "legacy-sync-secret"}

    return _verify_token(config, token, "sync:payments")
