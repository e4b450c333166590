import redis.asyncio as redis
from community_engine.core.config import settings

# Written by the identity provider on logout; one key per revoked token id.
token_blocklist = redis.Redis(
    host=settings.REDIS_HOST,
    port=settings.REDIS_PORT,
    db=0,
    decode_responses=True
)

async def token_in_blocklist(jti: str) -> bool:
    return await token_blocklist.exists(jti) > 0
