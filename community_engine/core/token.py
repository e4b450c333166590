from datetime import datetime, timedelta, timezone
from typing import Optional
import uuid

import jwt
from fastapi import HTTPException, status

from community_engine.core.config import settings


REQUIRED_CLAIMS = ["sub", "exp"]


def create_access_token(
    user_id: str,
    email: str,
    role: str,
    expires_in_min: Optional[int] = None,
) -> str:
    """Mint a token shaped like the identity provider's (local tooling and tests)."""
    issued_at = datetime.now(timezone.utc)
    lifetime = timedelta(
        minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES if expires_in_min is None else expires_in_min
    )

    claims = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "jti": uuid.uuid4().hex,
        "iat": issued_at,
        "exp": issued_at + lifetime,
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(
            token,
            key=settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
