"""
Shared request dependencies.

Access tokens are issued by the account service; this API only verifies them.
Tokens are HS256 JWTs whose ``sub`` is the user id; administrators carry a
``super_admin`` claim.
"""
import logging
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from budgee.config import settings
from budgee.database.gateway import StorageGateway
from budgee.database.models import User
from budgee.database.postgres_db import get_db

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.InvalidTokenError as e:
        logger.info(f"Rejected access token: {e}")
        return None
    if payload.get("sub") is None:
        return None
    return payload


async def get_token_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    claims = decode_access_token(credentials.credentials) if credentials else None
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims


async def get_current_user(
    claims: Dict[str, Any] = Depends(get_token_claims),
    db: Session = Depends(get_db),
) -> User:
    user = db.get(User, str(claims["sub"]))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def require_super_admin(
    claims: Dict[str, Any] = Depends(get_token_claims),
    current_user: User = Depends(get_current_user),
) -> User:
    if claims.get("super_admin") is not True:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Administrator access required"
        )
    return current_user


def get_gateway(db: Session = Depends(get_db)) -> StorageGateway:
    return StorageGateway(db)
