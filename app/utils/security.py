from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from core.config import config
from core.exceptions.base import UnauthorizedException

ACCESS_TOKEN_TYPE = "access"


def create_access_token(
    user_id: str,
    role: str,
    organization_id: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue an access token scoped to one organization.

    Tokens are normally minted by the identity service sharing SECRET_KEY;
    this is used for service-to-service calls and tests.
    """
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=config.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    claims = {
        "sub": user_id,
        "role": role,
        "org": organization_id,
        "exp": expire,
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(claims, config.SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature, expiry and token type; return the claims."""
    try:
        claims = jwt.decode(token, config.SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except JWTError:
        raise UnauthorizedException(message="Invalid or expired token")

    if claims.get("type") != ACCESS_TOKEN_TYPE or not claims.get("sub"):
        raise UnauthorizedException(message="Invalid token type")
    return claims
