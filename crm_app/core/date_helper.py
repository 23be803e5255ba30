import secrets
import string
from datetime import date, datetime, timezone

_CODE_ALPHABET = string.ascii_uppercase + string.digits


def utc_now() -> datetime:
    # Columns are naive UTC.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def dated_code(prefix: str, today: date | None = None) -> str:
    today = today or utc_now().date()
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(4))
    return f"{prefix}-{today.strftime('%Y%m%d')}-{suffix}"
