import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi_utils.cbv import cbv
from sqlalchemy.ext.asyncio import AsyncSession

from core.get_current_user import get_current_user
from core.get_db import get_db_async
from core.safe_handler import safe_handler
from core.throttling import rate_limit
from models.enums import BookingStatus
from models.models import User
from schemas.schema import (
    BookingCancelSchema,
    BookingCreateSchema,
    BookingOut,
    BookingPage,
    BookingStatsOut,
    BookingStatusSchema,
    BookingUpdateSchema,
    NextStatusesOut,
    PaymentSummaryOut,
    StatusLogOut,
    TransactionCreateSchema,
    TransactionOut,
)
from services.booking_service import BookingService

router = APIRouter(tags=["Bookings"])


@cbv(router=router)
class BookingRoutes:
    db: AsyncSession = Depends(get_db_async)
    current_user: User = Depends(get_current_user)

    @router.post(
        "/bookings", dependencies=[rate_limit], response_model=BookingOut, status_code=201
    )
    @safe_handler
    async def create(self, data: BookingCreateSchema):
        return await BookingService(self.db).create_booking(
            data=data, current_user=self.current_user
        )

    @router.get("/bookings", dependencies=[rate_limit], response_model=BookingPage)
    @safe_handler
    async def list_bookings(
        self,
        search: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        project_id: Optional[uuid.UUID] = None,
        page: int = 1,
        per_page: int = 20,
    ):
        return await BookingService(self.db).list_bookings(
            self.current_user,
            search=search,
            status=status,
            project_id=project_id,
            page=page,
            per_page=per_page,
        )

    @router.get("/bookings/stats", dependencies=[rate_limit], response_model=BookingStatsOut)
    @safe_handler
    async def stats(self, project_id: Optional[uuid.UUID] = None):
        return await BookingService(self.db).stats(
            self.current_user, project_id=project_id
        )

    @router.get("/bookings/{booking_id}", dependencies=[rate_limit], response_model=BookingOut)
    @safe_handler
    async def get(self, booking_id: uuid.UUID):
        return await BookingService(self.db).get_booking(
            booking_id=booking_id, current_user=self.current_user
        )

    @router.patch("/bookings/{booking_id}", dependencies=[rate_limit], response_model=BookingOut)
    @safe_handler
    async def update(self, booking_id: uuid.UUID, data: BookingUpdateSchema):
        return await BookingService(self.db).update_booking(
            booking_id=booking_id, data=data, current_user=self.current_user
        )

    @router.delete("/bookings/{booking_id}", dependencies=[rate_limit])
    @safe_handler
    async def delete(self, booking_id: uuid.UUID):
        return await BookingService(self.db).delete_booking(
            booking_id=booking_id, current_user=self.current_user
        )

    @router.post(
        "/bookings/{booking_id}/approve", dependencies=[rate_limit], response_model=BookingOut
    )
    @safe_handler
    async def approve(self, booking_id: uuid.UUID):
        return await BookingService(self.db).approve(
            booking_id=booking_id, current_user=self.current_user
        )

    @router.post(
        "/bookings/{booking_id}/cancel", dependencies=[rate_limit], response_model=BookingOut
    )
    @safe_handler
    async def cancel(self, booking_id: uuid.UUID, data: BookingCancelSchema):
        return await BookingService(self.db).cancel(
            booking_id=booking_id, reason=data.reason, current_user=self.current_user
        )

    @router.post(
        "/bookings/{booking_id}/status", dependencies=[rate_limit], response_model=BookingOut
    )
    @safe_handler
    async def change_status(self, booking_id: uuid.UUID, data: BookingStatusSchema):
        return await BookingService(self.db).transition(
            booking_id,
            data.status,
            self.current_user,
            contract_number=data.contract_number,
            reason=data.reason,
            notes=data.notes,
        )

    @router.post(
        "/bookings/{booking_id}/deposits",
        dependencies=[rate_limit],
        response_model=TransactionOut,
        status_code=201,
    )
    @safe_handler
    async def add_deposit(self, booking_id: uuid.UUID, data: TransactionCreateSchema):
        return await BookingService(self.db).add_deposit(
            booking_id,
            data.amount,
            self.current_user,
            payment_method=data.payment_method,
            notes=data.notes,
        )

    @router.post(
        "/bookings/{booking_id}/payments",
        dependencies=[rate_limit],
        response_model=TransactionOut,
        status_code=201,
    )
    @safe_handler
    async def add_payment(self, booking_id: uuid.UUID, data: TransactionCreateSchema):
        return await BookingService(self.db).add_payment(
            booking_id,
            data.amount,
            self.current_user,
            payment_method=data.payment_method,
            notes=data.notes,
        )

    @router.post(
        "/bookings/{booking_id}/refunds",
        dependencies=[rate_limit],
        response_model=TransactionOut,
        status_code=201,
    )
    @safe_handler
    async def add_refund(self, booking_id: uuid.UUID, data: TransactionCreateSchema):
        return await BookingService(self.db).add_refund(
            booking_id,
            data.amount,
            self.current_user,
            payment_method=data.payment_method,
            notes=data.notes,
        )

    @router.get(
        "/bookings/{booking_id}/transactions",
        dependencies=[rate_limit],
        response_model=List[TransactionOut],
    )
    @safe_handler
    async def transactions(self, booking_id: uuid.UUID):
        return await BookingService(self.db).get_transactions(
            booking_id=booking_id, current_user=self.current_user
        )

    @router.get(
        "/bookings/{booking_id}/history",
        dependencies=[rate_limit],
        response_model=List[StatusLogOut],
    )
    @safe_handler
    async def history(self, booking_id: uuid.UUID):
        return await BookingService(self.db).get_status_history(
            booking_id=booking_id, current_user=self.current_user
        )

    @router.get(
        "/bookings/{booking_id}/summary",
        dependencies=[rate_limit],
        response_model=PaymentSummaryOut,
    )
    @safe_handler
    async def summary(self, booking_id: uuid.UUID):
        return await BookingService(self.db).payment_summary(
            booking_id=booking_id, current_user=self.current_user
        )

    @router.get(
        "/bookings/{booking_id}/next-statuses",
        dependencies=[rate_limit],
        response_model=NextStatusesOut,
    )
    @safe_handler
    async def next_statuses(self, booking_id: uuid.UUID):
        return await BookingService(self.db).get_next_statuses(
            booking_id=booking_id, current_user=self.current_user
        )
