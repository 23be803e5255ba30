import logging

from fastapi import Depends, Request, Response
from fastapi.responses import JSONResponse
from fastapi_limiter import FastAPILimiter
from fastapi_limiter.depends import RateLimiter
from redis.asyncio import from_url
from tenacity import retry, stop_after_attempt, wait_exponential

from .settings import settings
from .validators import decode_access_token, token_from_request

logger = logging.getLogger(__name__)


class RateLimitManager:
    def __init__(self):
        self.redis = None
        self.enabled = False

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _init_limiter(self):
        self.redis = from_url(
            settings.RATE_LIMIT_REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        await self.redis.ping()
        await FastAPILimiter.init(self.redis, identifier=self.user_or_ip)

    async def connect(self):
        if not settings.RATE_LIMIT_ENABLED:
            logger.info("Rate limiting disabled.")
            return
        try:
            await self._init_limiter()
            self.enabled = True
            logger.info("Rate limiter initialized.")
        except Exception:
            logger.exception("Rate limiter initialization failed; running without it.")

    async def close(self):
        if self.enabled:
            await FastAPILimiter.close()
            self.enabled = False

    @staticmethod
    async def limit_exceeded_handler(request: Request, exc):
        return JSONResponse(
            status_code=429,
            content={
                "success": False,
                "error": "rate_limited",
                "message": "Limit exceeded. Please try again later.",
            },
        )

    async def user_or_ip(self, request: Request) -> str:
        token = token_from_request(request)
        if token:
            try:
                return f"user:{decode_access_token(token)}"
            except ValueError as e:
                logger.debug(f"Rate limit falls back to client address: {e}")

        if request.client and request.client.host:
            return f"ip:{request.client.host}:{request.scope['path']}"

        return "anonymous"


rate_limiter_manager = RateLimitManager()
_limiter = RateLimiter(
    times=settings.RATE_LIMIT_TIMES,
    seconds=settings.RATE_LIMIT_SECONDS,
)


async def throttle(request: Request, response: Response):
    if not rate_limiter_manager.enabled:
        return
    await _limiter(request, response)


rate_limit = Depends(throttle)
