import logging
import uuid
from decimal import Decimal

from sqlalchemy import func

from core.atomic import atomic
from core.breaker import CircuitBreaker, breaker
from core.check_permission import CheckRolePermission
from core.date_helper import utc_now
from core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from core.mapper import ORMMapper
from core.paginate import PaginatePage
from core.settings import settings
from models.enums import (
    FORWARD_TRANSITIONS,
    TERMINAL_BOOKING_STATUSES,
    BookingStatus,
    PaymentMethod,
    PropertyStatus,
    TransactionType,
)
from models.models import Booking
from models.utils import calculate_commission, to_money
from repos.booking_repo import BookingRepo
from repos.property_repo import CustomerRepo, PropertyRepo
from repos.transaction_repo import TransactionRepo
from schemas.schema import (
    BookingCreateSchema,
    BookingOut,
    BookingPage,
    BookingStatsOut,
    BookingUpdateSchema,
    NextStatusesOut,
    PaymentSummaryOut,
    StatusLogOut,
    TransactionOut,
)

logger = logging.getLogger(__name__)

# Property moves that follow a forward step: new status, statuses it may leave.
PROPERTY_MOVES = {
    BookingStatus.APPROVED: (
        PropertyStatus.BOOKED,
        (PropertyStatus.AVAILABLE, PropertyStatus.HOLD),
    ),
    BookingStatus.COMPLETED: (PropertyStatus.SOLD, (PropertyStatus.BOOKED,)),
}

BOOKABLE_PROPERTY_STATUSES = (PropertyStatus.AVAILABLE, PropertyStatus.HOLD)
EDITABLE_STATUSES = [
    status for status in BookingStatus if status not in TERMINAL_BOOKING_STATUSES
]


def next_statuses(current: BookingStatus) -> list[BookingStatus]:
    if current in TERMINAL_BOOKING_STATUSES:
        return []
    return [FORWARD_TRANSITIONS[current], BookingStatus.CANCELLED]


class BookingService:
    def __init__(self, db):
        self.db = db
        self.repo: BookingRepo = BookingRepo(db)
        self.ledger: TransactionRepo = TransactionRepo(db)
        self.property_repo: PropertyRepo = PropertyRepo(db)
        self.customer_repo: CustomerRepo = CustomerRepo(db)
        self.permission: CheckRolePermission = CheckRolePermission()
        self.paginate: PaginatePage = PaginatePage()
        self.mapper: ORMMapper = ORMMapper()
        self.breaker: CircuitBreaker = breaker

    async def _load(
        self, booking_id: uuid.UUID, current_user, action: str
    ) -> Booking:
        self.permission.require(current_user, action)
        booking = await self.repo.get_booking_id(booking_id, fresh=True)
        if not booking:
            raise NotFoundError("Booking", booking_id)
        self.permission.require(current_user, action, booking)
        return booking

    async def _fresh_out(self, booking_id: uuid.UUID) -> BookingOut:
        booking = await self.repo.get_booking_id(booking_id, fresh=True)
        return self.mapper.one(booking, BookingOut)

    async def _advance(
        self,
        booking: Booking,
        target: BookingStatus,
        current_user,
        *,
        values: dict | None = None,
        note: str | None = None,
    ) -> None:
        """Conditioned status write plus its log row and property bookkeeping.

        Must run inside ``atomic``.
        """
        current = booking.status
        if target == BookingStatus.CANCELLED:
            allowed = current not in TERMINAL_BOOKING_STATUSES
        else:
            allowed = FORWARD_TRANSITIONS.get(current) == target
        if not allowed:
            raise InvalidTransitionError(current, target)

        moved = await self.repo.transition(
            booking.id, expected=[current], target=target, values=values
        )
        if not moved:
            latest = await self.repo.get_status(booking.id)
            raise InvalidTransitionError(latest, target)

        await self.repo.log_status_change(
            booking_id=booking.id,
            from_status=current,
            to_status=target,
            changed_by=current_user.id,
            note=note,
        )

        if target == BookingStatus.CANCELLED:
            await self._release_property(booking, current)
        elif target in PROPERTY_MOVES:
            property_status, only_from = PROPERTY_MOVES[target]
            moved = await self.property_repo.set_status(
                booking.property_id, property_status, only_from=only_from
            )
            if not moved:
                raise ValidationError(
                    "Property is already booked by another booking",
                    field="property_id",
                )

        logger.info(
            "Booking %s moved %s -> %s by %s",
            booking.id,
            current.value,
            target.value,
            current_user.id,
        )

    async def _release_property(self, booking: Booking, previous: BookingStatus):
        """Free the property once no other live booking references it.

        A pending booking only shares the hold; an approved one owned the
        BOOKED status and hands the property back to the remaining holds.
        """
        others = await self.repo.count_active_on_property(
            booking.property_id, exclude=booking.id
        )
        if not others:
            await self.property_repo.set_status(
                booking.property_id, PropertyStatus.AVAILABLE
            )
        elif previous != BookingStatus.PENDING:
            await self.property_repo.set_status(
                booking.property_id,
                PropertyStatus.HOLD,
                only_from=(PropertyStatus.BOOKED,),
            )

    async def create_booking(
        self, data: BookingCreateSchema, current_user
    ) -> BookingOut:
        async def handler():
            self.permission.require(current_user, "bookings:write")

            agreed_price = to_money(data.agreed_price)
            if agreed_price <= 0:
                raise ValidationError(
                    "Agreed price must be greater than zero", field="agreed_price"
                )
            deposit_amount = to_money(data.deposit_amount or 0)
            if deposit_amount < 0:
                raise ValidationError(
                    "Deposit amount cannot be negative", field="deposit_amount"
                )

            property = await self.property_repo.get_property_id(data.property_id)
            if not property:
                raise NotFoundError("Property", data.property_id)
            customer = await self.customer_repo.get_customer_id(data.customer_id)
            if not customer:
                raise NotFoundError("Customer", data.customer_id)
            if property.status not in BOOKABLE_PROPERTY_STATUSES:
                raise ValidationError(
                    "Property is not available for booking", field="property_id"
                )

            rate = property.project.commission_rate
            if rate is None:
                rate = settings.DEFAULT_COMMISSION_RATE

            async with atomic(self.db):
                held = await self.property_repo.set_status(
                    property.id,
                    PropertyStatus.HOLD,
                    only_from=BOOKABLE_PROPERTY_STATUSES,
                )
                if not held:
                    raise ValidationError(
                        "Property is not available for booking", field="property_id"
                    )

                booking = await self.repo.create(
                    {
                        "property_id": property.id,
                        "project_id": property.project_id,
                        "customer_id": customer.id,
                        "created_by_id": current_user.id,
                        "agreed_price": agreed_price,
                        "deposit_amount": deposit_amount,
                        "deposit_date": data.deposit_date,
                        "commission_rate": Decimal(rate),
                        "commission_amount": calculate_commission(agreed_price, rate),
                        "status": BookingStatus.PENDING,
                        "notes": data.notes,
                    }
                )
                await self.repo.log_status_change(
                    booking_id=booking.id,
                    from_status=None,
                    to_status=BookingStatus.PENDING,
                    changed_by=current_user.id,
                )
                booking_id = booking.id

            logger.info(
                "Booking %s created for property %s by %s",
                booking_id,
                property.id,
                current_user.id,
            )
            return await self._fresh_out(booking_id)

        return await self.breaker.call(handler)

    async def get_booking(self, booking_id: uuid.UUID, current_user) -> BookingOut:
        async def handler():
            booking = await self._load(booking_id, current_user, "bookings:read")
            return self.mapper.one(booking, BookingOut)

        return await self.breaker.call(handler)

    async def list_bookings(
        self,
        current_user,
        *,
        search: str | None = None,
        status: BookingStatus | None = None,
        project_id: uuid.UUID | None = None,
        page: int = 1,
        per_page: int = 20,
    ) -> BookingPage:
        async def handler():
            self.permission.require(current_user, "bookings:read")
            limit = self.paginate.clamp_limit(per_page)
            items, total = await self.repo.list_bookings(
                search=search,
                status=status,
                project_id=project_id,
                created_by=self.permission.list_scope(current_user, "bookings"),
                offset=self.paginate.offset(page, limit),
                limit=limit,
            )
            return BookingPage(
                items=self.mapper.many(items, BookingOut),
                total=total,
                page=page,
                per_page=limit,
            )

        return await self.breaker.call(handler)

    async def update_booking(
        self, booking_id: uuid.UUID, data: BookingUpdateSchema, current_user
    ) -> BookingOut:
        async def handler():
            booking = await self._load(booking_id, current_user, "bookings:manage")
            if isinstance(data, BookingUpdateSchema):
                values = data.model_dump(exclude_unset=True)
            else:
                values = dict(data)
            if "status" in values or "deposit_amount" in values:
                raise ValidationError(
                    "Use the booking actions to change status or deposits",
                    field="status" if "status" in values else "deposit_amount",
                )
            if booking.status in TERMINAL_BOOKING_STATUSES:
                raise InvalidTransitionError(
                    booking.status,
                    booking.status,
                    message=f"Booking is {booking.status.value} and can no longer be edited",
                )
            if not values:
                return self.mapper.one(booking, BookingOut)

            if values.get("agreed_price") is not None:
                values["agreed_price"] = to_money(values["agreed_price"])
                values["commission_amount"] = calculate_commission(
                    values["agreed_price"], booking.commission_rate
                )
            elif "agreed_price" in values:
                raise ValidationError(
                    "Agreed price must be greater than zero", field="agreed_price"
                )

            async with atomic(self.db):
                updated = await self.repo.update_fields(
                    booking.id, allowed=EDITABLE_STATUSES, values=values
                )
                if not updated:
                    latest = await self.repo.get_status(booking.id)
                    raise InvalidTransitionError(
                        latest,
                        latest,
                        message="Booking can no longer be edited",
                    )

            return await self._fresh_out(booking.id)

        return await self.breaker.call(handler)

    async def approve(self, booking_id: uuid.UUID, current_user) -> BookingOut:
        return await self.transition(booking_id, BookingStatus.APPROVED, current_user)

    async def mark_deposited(
        self, booking_id: uuid.UUID, current_user, notes: str | None = None
    ) -> BookingOut:
        return await self.transition(
            booking_id, BookingStatus.DEPOSITED, current_user, notes=notes
        )

    async def sign_contract(
        self,
        booking_id: uuid.UUID,
        current_user,
        contract_number: str | None = None,
        notes: str | None = None,
    ) -> BookingOut:
        return await self.transition(
            booking_id,
            BookingStatus.CONTRACTED,
            current_user,
            contract_number=contract_number,
            notes=notes,
        )

    async def complete(
        self, booking_id: uuid.UUID, current_user, notes: str | None = None
    ) -> BookingOut:
        return await self.transition(
            booking_id, BookingStatus.COMPLETED, current_user, notes=notes
        )

    async def cancel(
        self, booking_id: uuid.UUID, reason: str, current_user
    ) -> BookingOut:
        return await self.transition(
            booking_id, BookingStatus.CANCELLED, current_user, reason=reason
        )

    async def transition(
        self,
        booking_id: uuid.UUID,
        target: BookingStatus,
        current_user,
        *,
        contract_number: str | None = None,
        reason: str | None = None,
        notes: str | None = None,
    ) -> BookingOut:
        async def handler():
            values = {}
            note = notes
            if target == BookingStatus.CANCELLED:
                cleaned = (reason or "").strip()
                if not cleaned:
                    raise ValidationError(
                        "Cancellation reason is required", field="reason"
                    )
                values["cancellation_reason"] = cleaned
                note = cleaned

            booking = await self._load(booking_id, current_user, "bookings:manage")

            today = utc_now().date()
            if target == BookingStatus.CONTRACTED:
                values["contract_date"] = today
                if contract_number:
                    values["contract_number"] = contract_number
            elif target == BookingStatus.COMPLETED:
                values["handover_date"] = func.coalesce(Booking.handover_date, today)

            async with atomic(self.db):
                await self._advance(
                    booking, target, current_user, values=values, note=note
                )

            return await self._fresh_out(booking.id)

        return await self.breaker.call(handler)

    async def _append_entry(
        self,
        booking_id: uuid.UUID,
        type: TransactionType,
        amount: Decimal,
        current_user,
        payment_method: PaymentMethod | None = None,
        notes: str | None = None,
    ) -> TransactionOut:
        async def handler():
            value = to_money(amount)
            if value <= 0:
                raise ValidationError("Amount must be greater than zero", field="amount")

            self.permission.require(current_user, "transactions:write")
            booking = await self.repo.get_booking_id(booking_id)
            if not booking:
                raise NotFoundError("Booking", booking_id)

            async with atomic(self.db):
                entry = await self.ledger.append(
                    booking_id=booking.id,
                    type=type,
                    amount=value,
                    payment_method=payment_method,
                    notes=notes,
                    created_by=current_user.id,
                )
                if type == TransactionType.DEPOSIT:
                    await self.repo.add_to_deposit(
                        booking.id, value, entry.payment_date.date()
                    )

            logger.info(
                "Ledger %s %s of %s on booking %s by %s",
                entry.code,
                type.value,
                value,
                booking.id,
                current_user.id,
            )
            return self.mapper.one(entry, TransactionOut)

        return await self.breaker.call(handler)

    async def add_deposit(
        self,
        booking_id: uuid.UUID,
        amount: Decimal,
        current_user,
        payment_method: PaymentMethod | None = None,
        notes: str | None = None,
    ) -> TransactionOut:
        return await self._append_entry(
            booking_id,
            TransactionType.DEPOSIT,
            amount,
            current_user,
            payment_method=payment_method,
            notes=notes,
        )

    async def add_payment(
        self,
        booking_id: uuid.UUID,
        amount: Decimal,
        current_user,
        payment_method: PaymentMethod | None = None,
        notes: str | None = None,
    ) -> TransactionOut:
        return await self._append_entry(
            booking_id,
            TransactionType.PAYMENT,
            amount,
            current_user,
            payment_method=payment_method,
            notes=notes,
        )

    async def add_refund(
        self,
        booking_id: uuid.UUID,
        amount: Decimal,
        current_user,
        payment_method: PaymentMethod | None = None,
        notes: str | None = None,
    ) -> TransactionOut:
        return await self._append_entry(
            booking_id,
            TransactionType.REFUND,
            amount,
            current_user,
            payment_method=payment_method,
            notes=notes,
        )

    async def get_transactions(
        self, booking_id: uuid.UUID, current_user
    ) -> list[TransactionOut]:
        async def handler():
            booking = await self._load(booking_id, current_user, "transactions:read")
            entries = await self.ledger.list_for_booking(booking.id)
            return self.mapper.many(entries, TransactionOut)

        return await self.breaker.call(handler)

    async def get_status_history(
        self, booking_id: uuid.UUID, current_user
    ) -> list[StatusLogOut]:
        async def handler():
            booking = await self._load(booking_id, current_user, "bookings:read")
            logs = await self.repo.get_status_logs(booking.id)
            return self.mapper.many(logs, StatusLogOut)

        return await self.breaker.call(handler)

    async def payment_summary(
        self, booking_id: uuid.UUID, current_user
    ) -> PaymentSummaryOut:
        async def handler():
            booking = await self._load(booking_id, current_user, "bookings:read")
            entries = await self.ledger.list_for_booking(booking.id)

            totals = {kind: Decimal("0") for kind in TransactionType}
            for entry in entries:
                totals[entry.type] += Decimal(entry.amount)

            deposits = to_money(totals[TransactionType.DEPOSIT])
            payments = to_money(totals[TransactionType.PAYMENT])
            refunds = to_money(totals[TransactionType.REFUND])
            total_paid = deposits + payments - refunds

            return PaymentSummaryOut(
                booking_id=booking.id,
                agreed_price=to_money(booking.agreed_price),
                deposits=deposits,
                payments=payments,
                refunds=refunds,
                total_paid=total_paid,
                remaining=to_money(booking.agreed_price) - total_paid,
                deposit_amount=to_money(booking.deposit_amount),
                commission_rate=Decimal(booking.commission_rate),
                commission_amount=to_money(booking.commission_amount),
            )

        return await self.breaker.call(handler)

    async def get_next_statuses(
        self, booking_id: uuid.UUID, current_user
    ) -> NextStatusesOut:
        async def handler():
            booking = await self._load(booking_id, current_user, "bookings:read")
            return NextStatusesOut(
                booking_id=booking.id,
                current=booking.status,
                next=next_statuses(booking.status),
            )

        return await self.breaker.call(handler)

    async def stats(
        self, current_user, project_id: uuid.UUID | None = None
    ) -> BookingStatsOut:
        async def handler():
            self.permission.require(current_user, "reports:read")
            counts = await self.repo.count_by_status(project_id)
            by_status = {status: counts.get(status, 0) for status in BookingStatus}

            revenue = Decimal("0")
            commission = Decimal("0")
            for agreed_price, commission_amount in await self.repo.completed_amounts(
                project_id
            ):
                revenue += Decimal(agreed_price)
                commission += Decimal(commission_amount)

            return BookingStatsOut(
                total=sum(by_status.values()),
                by_status=by_status,
                revenue=to_money(revenue),
                commission=to_money(commission),
            )

        return await self.breaker.call(handler)

    async def delete_booking(self, booking_id: uuid.UUID, current_user) -> dict:
        async def handler():
            booking = await self._load(booking_id, current_user, "bookings:delete")
            if await self.repo.has_transactions(booking.id):
                raise ValidationError(
                    "Booking has ledger entries; cancel it instead", field="booking_id"
                )

            async with atomic(self.db):
                if booking.status not in TERMINAL_BOOKING_STATUSES:
                    await self._release_property(booking, booking.status)
                await self.repo.hard_delete(booking.id)

            logger.info("Booking %s deleted by %s", booking.id, current_user.id)
            return {"success": True, "message": "Booking deleted"}

        return await self.breaker.call(handler)
