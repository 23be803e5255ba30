import uuid
from decimal import Decimal
from typing import List

from sqlalchemy import select

from models.enums import PaymentMethod, TransactionType
from models.models import Transaction


class TransactionRepo:
    """Append-only ledger: rows are created and read, never changed."""

    def __init__(self, db):
        self.db = db

    async def append(
        self,
        *,
        booking_id: uuid.UUID,
        type: TransactionType,
        amount: Decimal,
        payment_method: PaymentMethod | None = None,
        notes: str | None = None,
        created_by: uuid.UUID | None = None,
    ) -> Transaction:
        entry = Transaction(
            booking_id=booking_id,
            type=type,
            amount=amount,
            payment_method=payment_method,
            notes=notes,
            created_by_id=created_by,
        )
        self.db.add(entry)
        await self.db.flush()
        await self.db.refresh(entry)
        return entry

    async def list_for_booking(self, booking_id: uuid.UUID) -> List[Transaction]:
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.booking_id == booking_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        )
        return result.scalars().all()
