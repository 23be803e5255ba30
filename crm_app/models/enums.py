from enum import Enum


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    SALES = "SALES"
    ACCOUNTANT = "ACCOUNTANT"
    MARKETING = "MARKETING"
    SUPPORT = "SUPPORT"


class PropertyStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    HOLD = "HOLD"
    BOOKED = "BOOKED"
    SOLD = "SOLD"


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DEPOSITED = "DEPOSITED"
    CONTRACTED = "CONTRACTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


TERMINAL_BOOKING_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED}
)

# Forward path only; cancellation is handled separately.
FORWARD_TRANSITIONS: dict[BookingStatus, BookingStatus] = {
    BookingStatus.PENDING: BookingStatus.APPROVED,
    BookingStatus.APPROVED: BookingStatus.DEPOSITED,
    BookingStatus.DEPOSITED: BookingStatus.CONTRACTED,
    BookingStatus.CONTRACTED: BookingStatus.COMPLETED,
}


class TransactionType(str, Enum):
    DEPOSIT = "DEPOSIT"
    PAYMENT = "PAYMENT"
    COMMISSION = "COMMISSION"
    REFUND = "REFUND"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK_TRANSFER = "BANK_TRANSFER"
    CARD = "CARD"
    OTHER = "OTHER"


class ConversationType(str, Enum):
    DIRECT = "DIRECT"
    GROUP = "GROUP"


class MessageType(str, Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    FILE = "FILE"
    PROPERTY_SHARE = "PROPERTY_SHARE"
