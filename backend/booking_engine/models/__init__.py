from booking_engine.models.catalog import Movie, Theater, Screen
from booking_engine.models.show import Show, ShowSeat, ShowStatus, SeatStatus
from booking_engine.models.booking import Booking, BookingStatus, TicketStatus, PaymentStatus, RefundStatus
from booking_engine.models.coupon import Coupon, CouponStatus, DiscountType

__all__ = [
    "Movie", "Theater", "Screen",
    "Show", "ShowSeat", "ShowStatus", "SeatStatus",
    "Booking", "BookingStatus", "TicketStatus", "PaymentStatus", "RefundStatus",
    "Coupon", "CouponStatus", "DiscountType",
]
