"""
Booking model representing one purchase attempt for a show.

Key design decisions:
- `booking_number` carries a unique constraint; generation retries on collision
- Status changes are applied with conditional UPDATEs on the expected prior
  status, so the CHECK on `status` plus the WHERE clause make transitions
  race-free
- Seats are snapshotted as JSON with their locked-in prices; the live seat
  state belongs to `show_seats`
- `total_amount = subtotal_amount - discount_amount + additional_charges`
"""

import enum

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, Enum, Float, ForeignKey, Index, Integer, String

from booking_engine.db.base import Base, TimestampMixin, UTCDateTime


class BookingStatus(str, enum.Enum):
    INITIATED = "INITIATED"              # record created, seats being held
    PAYMENT_PENDING = "PAYMENT_PENDING"  # seats blocked, awaiting payment
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"
    EXPIRED = "EXPIRED"                  # hold timed out before payment


HOLDING_STATUSES = (BookingStatus.INITIATED, BookingStatus.PAYMENT_PENDING)
DELETABLE_STATUSES = (BookingStatus.INITIATED, BookingStatus.PAYMENT_PENDING, BookingStatus.EXPIRED)
PAID_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingStatus.REFUNDED)


class TicketStatus(str, enum.Enum):
    PENDING = "PENDING"
    GENERATED = "GENERATED"
    DELIVERED = "DELIVERED"
    CHECKED_IN = "CHECKED_IN"
    EXPIRED = "EXPIRED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class RefundStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


def _enum(enum_cls):
    return Enum(enum_cls, native_enum=False, length=20)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    booking_number = Column(String(32), nullable=False, unique=True, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    show_id = Column(Integer, ForeignKey("shows.id"), nullable=False, index=True)
    movie_id = Column(Integer, nullable=False, index=True)
    theater_id = Column(Integer, nullable=False, index=True)
    show_time = Column(UTCDateTime, nullable=False)
    experience = Column(String(50), nullable=True)
    language = Column(String(50), nullable=True)

    # [{"seat_id", "row", "column", "category", "base_price", "final_price"}]
    seats = Column(JSON, nullable=False, default=list)

    # Pricing
    coupon_id = Column(Integer, nullable=True)
    coupon_code = Column(String(50), nullable=True, index=True)
    coupon_type = Column(String(20), nullable=True)
    subtotal_amount = Column(Float, nullable=False, default=0.0)
    discount_amount = Column(Float, nullable=False, default=0.0)
    additional_charges = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False, default=0.0)

    status = Column(_enum(BookingStatus), nullable=False, default=BookingStatus.INITIATED)
    held_at = Column(UTCDateTime, nullable=False)

    # Payment
    payment_order_ref = Column(String(100), nullable=True)
    payment_reference = Column(String(100), nullable=True)
    payment_transaction_id = Column(String(100), nullable=True)
    payment_method = Column(String(30), nullable=True)
    payment_status = Column(_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    payment_attempts = Column(Integer, nullable=False, default=0)
    paid_at = Column(UTCDateTime, nullable=True)

    # Ticket fulfilment
    ticket_status = Column(_enum(TicketStatus), nullable=False, default=TicketStatus.PENDING)
    qr_code_url = Column(String(255), nullable=True)
    email_sent = Column(Boolean, nullable=False, default=False)
    sms_sent = Column(Boolean, nullable=False, default=False)
    last_notification_at = Column(UTCDateTime, nullable=True)
    checked_in_at = Column(UTCDateTime, nullable=True)

    # Cancellation
    cancellation_reason = Column(String(500), nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    cancelled_by = Column(String(64), nullable=True)

    # Refund
    refund_id = Column(String(64), nullable=True)
    refund_amount = Column(Float, nullable=True)
    refund_status = Column(_enum(RefundStatus), nullable=True)
    refund_requested_at = Column(UTCDateTime, nullable=True)
    refund_processed_at = Column(UTCDateTime, nullable=True)
    refund_transaction_id = Column(String(100), nullable=True)

    __table_args__ = (
        CheckConstraint("discount_amount >= 0", name="check_booking_discount_non_negative"),
        CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
        # Expiry sweep: WHERE status IN (...) AND held_at <= cutoff
        Index("ix_bookings_status_held_at", "status", "held_at"),
        Index("ix_bookings_user_coupon", "user_id", "coupon_code"),
    )

    @property
    def seat_ids(self) -> list[str]:
        return [seat["seat_id"] for seat in self.seats or []]

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, number={self.booking_number}, show={self.show_id}, status={self.status})>"
