import uuid

import jwt
from fastapi import HTTPException, Request

from .settings import settings


def decode_access_token(token: str) -> uuid.UUID:
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except jwt.ExpiredSignatureError:
        raise ValueError("Token expired")
    except jwt.InvalidTokenError:
        raise ValueError("Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise ValueError("Token missing user ID")

    try:
        return uuid.UUID(str(user_id))
    except ValueError:
        raise ValueError("Invalid user ID format in token")


def issue_access_token(user_id: uuid.UUID, **claims) -> str:
    return jwt.encode(
        {"sub": str(user_id), **claims},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )


def token_from_request(request: Request) -> str | None:
    token = request.cookies.get("access_token")
    if token:
        return token
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return None


async def jwt_protect(request: Request) -> uuid.UUID:
    token = token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        return decode_access_token(token)
    except ValueError as e:
        raise HTTPException(status_code=401, detail=str(e))
