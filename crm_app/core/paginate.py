import base64
import binascii
import uuid
from dataclasses import dataclass
from datetime import datetime

from .exceptions import ValidationError
from .settings import settings


@dataclass(frozen=True)
class Cursor:
    created_at: datetime
    id: uuid.UUID


class PaginatePage:
    def clamp_limit(self, limit: int | None, default: int | None = None) -> int:
        if limit is None:
            return default or settings.MESSAGE_PAGE_SIZE
        if limit < 1:
            raise ValidationError("limit must be at least 1", field="limit")
        return min(limit, settings.MAX_PAGE_SIZE)

    def offset(self, page: int, per_page: int) -> int:
        if page < 1:
            raise ValidationError("page must be at least 1", field="page")
        return (page - 1) * per_page

    def encode_cursor(self, created_at: datetime, item_id: uuid.UUID) -> str:
        raw = f"{created_at.isoformat()}|{item_id}".encode()
        return base64.urlsafe_b64encode(raw).decode().rstrip("=")

    def decode_cursor(self, token: str) -> Cursor:
        padded = token + "=" * (-len(token) % 4)
        try:
            raw = base64.urlsafe_b64decode(padded.encode()).decode()
            created_at, item_id = raw.split("|", 1)
            return Cursor(
                created_at=datetime.fromisoformat(created_at),
                id=uuid.UUID(item_id),
            )
        except (binascii.Error, UnicodeDecodeError, ValueError):
            raise ValidationError("Malformed cursor", field="cursor")
