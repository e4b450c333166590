from uuid import UUID

from fastapi import Request, Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from community_engine.core.token import decode_token
from community_engine.utils.redis import token_in_blocklist
from community_engine.core.database import get_session
from community_engine.services.identity import IdentityProvider
from community_engine.models.user import User


class AccessTokenBearer(HTTPBearer):
    """ Extracts the identity provider's token, decodes it, checks the blocklist """

    async def __call__(self, request: Request) -> dict:
        credentials: HTTPAuthorizationCredentials = await super().__call__(request)

        if not credentials or credentials.scheme.lower() != "bearer":
            raise HTTPException(status_code=403, detail="No bearer token provided")

        payload = decode_token(credentials.credentials)

        jti = payload.get("jti")
        if jti and await token_in_blocklist(jti):
            raise HTTPException(status_code=403, detail="Token revoked")

        if payload.get("refresh"):
            raise HTTPException(status_code=403, detail="Refresh token not allowed")

        return payload


async def get_current_user(
    payload: dict = Depends(AccessTokenBearer()),
    db: AsyncSession = Depends(get_session),
) -> User:

    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(401, "Invalid token payload")

    user = await IdentityProvider(db).get_by_id(user_id)

    if not user:
        raise HTTPException(404, "User not found")

    return user

