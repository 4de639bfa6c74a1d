"""Domain enumerations and state-transition rules."""

import enum


class PaymentStatus(str, enum.Enum):
    """Booking-level payment status."""

    AWAITING_PAYMENT = "awaiting_payment"
    PAYMENT_IN_PROGRESS = "payment_in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
PAYMENT_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.AWAITING_PAYMENT: {
        PaymentStatus.PAYMENT_IN_PROGRESS,
        PaymentStatus.FAILED,  # adapter rejected initiation / hold expired
        PaymentStatus.COMPLETED,  # top-up abandoned, back to prior paid seats
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PAYMENT_IN_PROGRESS: {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.AWAITING_PAYMENT,  # paid, but seats were added meanwhile
    },
    PaymentStatus.COMPLETED: {PaymentStatus.AWAITING_PAYMENT},
    PaymentStatus.FAILED: {PaymentStatus.AWAITING_PAYMENT, PaymentStatus.CANCELLED},
    PaymentStatus.CANCELLED: set(),
}

# Statuses in which a booking counts its full seat_count against inventory
SEAT_HOLDING_STATUSES = frozenset(
    {
        PaymentStatus.AWAITING_PAYMENT,
        PaymentStatus.PAYMENT_IN_PROGRESS,
        PaymentStatus.COMPLETED,
    }
)


class TransactionStatus(str, enum.Enum):
    INITIATED = "initiated"
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"


ACTIVE_TRANSACTION_STATUSES = frozenset(
    {TransactionStatus.INITIATED, TransactionStatus.PENDING}
)
TERMINAL_TRANSACTION_STATUSES = frozenset(
    {TransactionStatus.SUCCEEDED, TransactionStatus.FAILED, TransactionStatus.EXPIRED}
)

TRANSACTION_TRANSITIONS: dict[TransactionStatus, set[TransactionStatus]] = {
    TransactionStatus.INITIATED: {
        TransactionStatus.PENDING,
        *TERMINAL_TRANSACTION_STATUSES,
    },
    TransactionStatus.PENDING: set(TERMINAL_TRANSACTION_STATUSES),
    TransactionStatus.SUCCEEDED: set(),
    TransactionStatus.FAILED: set(),
    TransactionStatus.EXPIRED: set(),
}


class ProviderStatus(str, enum.Enum):
    """Provider-agnostic answer to a status query."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"
    UNKNOWN = "unknown"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ProviderStatus.SUCCEEDED,
            ProviderStatus.FAILED,
            ProviderStatus.EXPIRED,
        )

    def to_transaction_status(self) -> TransactionStatus:
        return TransactionStatus(self.value)


class PaymentProvider(str, enum.Enum):
    MTN = "mtn"
    ORANGE = "orange"
