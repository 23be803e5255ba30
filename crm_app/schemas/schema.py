from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models.enums import (
    BookingStatus,
    ConversationType,
    MessageType,
    PaymentMethod,
    PropertyStatus,
    TransactionType,
    UserRole,
)


def _not_blank(value: Optional[str], name: str) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError(f"{name} cannot be empty.")
    return value


# Bookings


class BookingCreateSchema(BaseModel):
    property_id: uuid.UUID
    customer_id: uuid.UUID
    agreed_price: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    deposit_amount: Optional[Decimal] = Field(
        None, ge=0, max_digits=18, decimal_places=2
    )
    deposit_date: Optional[date] = None
    notes: Optional[str] = None


class BookingUpdateSchema(BaseModel):
    """Plain field edits; status and the tracked deposit move through actions."""

    model_config = {"extra": "forbid"}

    agreed_price: Optional[Decimal] = Field(
        None, gt=0, max_digits=18, decimal_places=2
    )
    deposit_date: Optional[date] = None
    contract_date: Optional[date] = None
    handover_date: Optional[date] = None
    contract_number: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class BookingCancelSchema(BaseModel):
    reason: str = Field(..., max_length=2000)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: str):
        return _not_blank(value, "Cancellation reason")


class BookingStatusSchema(BaseModel):
    status: BookingStatus
    contract_number: Optional[str] = Field(None, max_length=100)
    reason: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_reason(self):
        if self.status == BookingStatus.CANCELLED:
            _not_blank(self.reason or "", "Cancellation reason")
        return self


class TransactionCreateSchema(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=18, decimal_places=2)
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None


class UserBriefOut(BaseModel):
    id: uuid.UUID
    full_name: str
    email: str
    avatar: Optional[str] = None
    role: UserRole

    model_config = {"from_attributes": True}


class CustomerBriefOut(BaseModel):
    id: uuid.UUID
    full_name: str
    phone: Optional[str] = None
    email: Optional[str] = None

    model_config = {"from_attributes": True}


class PropertyBriefOut(BaseModel):
    id: uuid.UUID
    code: str
    building: Optional[str] = None
    floor: Optional[int] = None
    status: PropertyStatus

    model_config = {"from_attributes": True}


class ProjectBriefOut(BaseModel):
    id: uuid.UUID
    code: str
    name: str

    model_config = {"from_attributes": True}


class BookingOut(BaseModel):
    id: uuid.UUID
    code: str
    property_id: uuid.UUID
    project_id: uuid.UUID
    customer_id: uuid.UUID
    created_by_id: uuid.UUID

    agreed_price: Decimal
    deposit_amount: Decimal
    deposit_date: Optional[date] = None
    contract_date: Optional[date] = None
    handover_date: Optional[date] = None
    contract_number: Optional[str] = None
    commission_rate: Decimal
    commission_amount: Decimal

    status: BookingStatus
    cancellation_reason: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    customer: Optional[CustomerBriefOut] = None
    property: Optional[PropertyBriefOut] = None
    project: Optional[ProjectBriefOut] = None
    created_by: Optional[UserBriefOut] = None

    model_config = {"from_attributes": True}


class BookingPage(BaseModel):
    items: List[BookingOut]
    total: int
    page: int
    per_page: int


class TransactionOut(BaseModel):
    id: uuid.UUID
    code: str
    booking_id: uuid.UUID
    type: TransactionType
    amount: Decimal
    payment_method: Optional[PaymentMethod] = None
    payment_date: datetime
    notes: Optional[str] = None
    created_by_id: Optional[uuid.UUID] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class StatusLogOut(BaseModel):
    id: uuid.UUID
    from_status: Optional[BookingStatus] = None
    to_status: BookingStatus
    changed_by_id: Optional[uuid.UUID] = None
    note: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentSummaryOut(BaseModel):
    booking_id: uuid.UUID
    agreed_price: Decimal
    deposits: Decimal
    payments: Decimal
    refunds: Decimal
    total_paid: Decimal
    remaining: Decimal
    deposit_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal


class NextStatusesOut(BaseModel):
    booking_id: uuid.UUID
    current: BookingStatus
    next: List[BookingStatus]


class BookingStatsOut(BaseModel):
    total: int
    by_status: dict[BookingStatus, int]
    revenue: Decimal
    commission: Decimal


# Chat


class ConversationCreateSchema(BaseModel):
    type: ConversationType = ConversationType.DIRECT
    participant_ids: List[uuid.UUID] = Field(..., min_length=1)
    name: Optional[str] = Field(None, max_length=255)
    property_id: Optional[uuid.UUID] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: Optional[str]):
        if value is None:
            return value
        return value.strip() or None


class ParticipantOut(BaseModel):
    user_id: uuid.UUID
    last_read_at: Optional[datetime] = None
    joined_at: datetime
    user: Optional[UserBriefOut] = None

    model_config = {"from_attributes": True}


class MessageOut(BaseModel):
    id: uuid.UUID
    conversation_id: uuid.UUID
    sender_id: uuid.UUID
    content: str
    type: MessageType
    property_id: Optional[uuid.UUID] = None
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: datetime
    sender: Optional[UserBriefOut] = None

    model_config = {"from_attributes": True}


class ConversationOut(BaseModel):
    id: uuid.UUID
    type: ConversationType
    name: Optional[str] = None
    property_id: Optional[uuid.UUID] = None
    created_by_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime
    participants: List[ParticipantOut] = []

    model_config = {"from_attributes": True}


class ConversationSummaryOut(ConversationOut):
    last_message: Optional[MessageOut] = None
    unread_count: int = 0


class MessageCreateSchema(BaseModel):
    model_config = {"extra": "forbid"}

    content: str = Field(..., max_length=5000)
    type: MessageType = MessageType.TEXT
    property_id: Optional[uuid.UUID] = None

    @field_validator("content")
    @classmethod
    def validate_content(cls, value: str):
        return _not_blank(value, "Message content")


class MessagePage(BaseModel):
    items: List[MessageOut]
    next_cursor: Optional[str] = None


class MarkReadOut(BaseModel):
    conversation_id: uuid.UUID
    updated: int
    last_read_at: Optional[datetime] = None


class UnreadCountOut(BaseModel):
    total: int
    by_conversation: dict[uuid.UUID, int] = {}
