import uuid

from fastapi import Depends, HTTPException, WebSocket
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.models import User

from .get_db import get_db_async
from .validators import decode_access_token, jwt_protect


async def _load_active_user(db: AsyncSession, user_id: uuid.UUID) -> User | None:
    result = await db.execute(
        select(User).where(User.id == user_id, User.is_active.is_(True))
    )
    return result.scalars().first()


async def get_current_user(
    user_id: uuid.UUID = Depends(jwt_protect), db: AsyncSession = Depends(get_db_async)
) -> User:
    user = await _load_active_user(db, user_id)

    if not user:
        raise HTTPException(status_code=401, detail="Not Authenticated")

    return user


async def get_current_user_ws(
    websocket: WebSocket,
    db: AsyncSession,
) -> User | None:
    token = websocket.cookies.get("access_token") or websocket.query_params.get(
        "token"
    )

    if not token:
        await websocket.close(code=4401)
        return None

    try:
        user_id = decode_access_token(token)
    except ValueError:
        await websocket.close(code=4401)
        return None

    user = await _load_active_user(db, user_id)
    if not user:
        await websocket.close(code=4401)
        return None

    return user
