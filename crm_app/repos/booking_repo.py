import uuid
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import selectinload

from models.enums import TERMINAL_BOOKING_STATUSES, BookingStatus
from models.models import (
    Booking,
    BookingStatusLog,
    Customer,
    Property,
    Transaction,
)


class BookingRepo:
    def __init__(self, db):
        self.db = db

    def _with_relations(self):
        return select(Booking).options(
            selectinload(Booking.customer),
            selectinload(Booking.property),
            selectinload(Booking.project),
            selectinload(Booking.created_by),
        )

    async def get_booking_id(
        self, booking_id: uuid.UUID, *, fresh: bool = False
    ) -> Optional[Booking]:
        stmt = self._with_relations().where(Booking.id == booking_id)
        if fresh:
            stmt = stmt.execution_options(populate_existing=True)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_status(self, booking_id: uuid.UUID) -> Optional[BookingStatus]:
        result = await self.db.execute(
            select(Booking.status).where(Booking.id == booking_id)
        )
        return result.scalar_one_or_none()

    async def create(self, data: dict) -> Booking:
        booking = Booking(**data)
        self.db.add(booking)
        await self.db.flush()
        return booking

    async def transition(
        self,
        booking_id: uuid.UUID,
        *,
        expected: Iterable[BookingStatus],
        target: BookingStatus,
        values: dict | None = None,
    ) -> bool:
        """UPDATE ... WHERE status IN expected. False when no row matched."""
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(list(expected)))
            .values(status=target, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def update_fields(
        self,
        booking_id: uuid.UUID,
        *,
        allowed: Iterable[BookingStatus],
        values: dict,
    ) -> bool:
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(list(allowed)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount == 1

    async def add_to_deposit(self, booking_id: uuid.UUID, amount, deposit_date) -> None:
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id)
            .values(
                deposit_amount=Booking.deposit_amount + amount,
                deposit_date=func.coalesce(Booking.deposit_date, deposit_date),
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.execute(stmt)

    async def log_status_change(
        self,
        *,
        booking_id: uuid.UUID,
        from_status: BookingStatus | None,
        to_status: BookingStatus,
        changed_by: uuid.UUID | None,
        note: str | None = None,
    ) -> BookingStatusLog:
        log = BookingStatusLog(
            booking_id=booking_id,
            from_status=from_status,
            to_status=to_status,
            changed_by_id=changed_by,
            note=note,
        )
        self.db.add(log)
        await self.db.flush()
        return log

    async def get_status_logs(self, booking_id: uuid.UUID) -> List[BookingStatusLog]:
        result = await self.db.execute(
            select(BookingStatusLog)
            .where(BookingStatusLog.booking_id == booking_id)
            .order_by(BookingStatusLog.created_at)
        )
        return result.scalars().all()

    async def has_transactions(self, booking_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(Transaction.id).where(Transaction.booking_id == booking_id).limit(1)
        )
        return result.first() is not None

    async def count_active_on_property(
        self, property_id: uuid.UUID, *, exclude: uuid.UUID | None = None
    ) -> int:
        """Non-terminal bookings still referencing the property."""
        stmt = select(func.count(Booking.id)).where(
            Booking.property_id == property_id,
            Booking.status.not_in(list(TERMINAL_BOOKING_STATUSES)),
        )
        if exclude is not None:
            stmt = stmt.where(Booking.id != exclude)
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def hard_delete(self, booking_id: uuid.UUID) -> None:
        await self.db.execute(
            delete(BookingStatusLog).where(BookingStatusLog.booking_id == booking_id)
        )
        await self.db.execute(delete(Booking).where(Booking.id == booking_id))

    def _filters(
        self,
        *,
        search: str | None,
        status: BookingStatus | None,
        project_id: uuid.UUID | None,
        created_by: uuid.UUID | None,
    ) -> list:
        conditions = []
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(
                or_(
                    Booking.code.ilike(pattern),
                    Booking.customer.has(Customer.full_name.ilike(pattern)),
                    Booking.property.has(Property.code.ilike(pattern)),
                )
            )
        if status:
            conditions.append(Booking.status == status)
        if project_id:
            conditions.append(Booking.project_id == project_id)
        if created_by:
            conditions.append(Booking.created_by_id == created_by)
        return conditions

    async def list_bookings(
        self,
        *,
        search: str | None = None,
        status: BookingStatus | None = None,
        project_id: uuid.UUID | None = None,
        created_by: uuid.UUID | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[List[Booking], int]:
        conditions = self._filters(
            search=search, status=status, project_id=project_id, created_by=created_by
        )
        stmt = (
            self._with_relations()
            .where(*conditions)
            .order_by(Booking.created_at.desc(), Booking.id.desc())
            .offset(offset)
            .limit(limit)
        )
        count_stmt = select(func.count(Booking.id)).where(*conditions)

        items = (await self.db.execute(stmt)).scalars().all()
        total = (await self.db.execute(count_stmt)).scalar_one()
        return items, total

    async def count_by_status(self, project_id: uuid.UUID | None = None) -> dict:
        stmt = select(Booking.status, func.count(Booking.id)).group_by(Booking.status)
        if project_id:
            stmt = stmt.where(Booking.project_id == project_id)
        result = await self.db.execute(stmt)
        return {status: count for status, count in result.all()}

    async def completed_amounts(self, project_id: uuid.UUID | None = None) -> list:
        stmt = select(Booking.agreed_price, Booking.commission_amount).where(
            Booking.status == BookingStatus.COMPLETED
        )
        if project_id:
            stmt = stmt.where(Booking.project_id == project_id)
        result = await self.db.execute(stmt)
        return result.all()
