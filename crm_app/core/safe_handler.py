import logging
from functools import wraps

from fastapi import HTTPException, Request

from .exceptions import CRMError
from .friendly_msg import get_friendly_message

logger = logging.getLogger(__name__)


def _describe(request: Request | None) -> str:
    if not request:
        return "no request"
    client_ip = request.client.host if request.client else "unknown"
    trace_id = request.headers.get("X-Request-ID", "none")
    return f"TraceID={trace_id} | Path: {request.url.path} | Client: {client_ip}"


def safe_handler(func):
    @wraps(func)
    async def wrapper(*args, **kwargs):
        request: Request | None = None
        for arg in list(args) + list(kwargs.values()):
            if isinstance(arg, Request):
                request = arg
                break

        try:
            return await func(*args, **kwargs)
        except HTTPException as e:
            logger.warning(
                f"[HTTPException] {_describe(request)} | {e.status_code}: {e.detail}"
            )
            raise
        except CRMError as e:
            logger.warning(f"[{e.kind}] {_describe(request)} | in {func.__name__}: {e}")
            raise
        except Exception as e:
            logger.error(
                f"[Unhandled Error] {_describe(request)} | in {func.__name__} | Error: {e}",
                exc_info=True,
            )
            raise HTTPException(status_code=500, detail=get_friendly_message(e))

    return wrapper
