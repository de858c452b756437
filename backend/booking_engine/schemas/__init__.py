from booking_engine.schemas.show import ShowCreate, ShowResponse, ShowListResponse, SeatMapResponse
from booking_engine.schemas.booking import BookingCreate, BookingResponse, PaymentConfirm, PaymentOrderResponse
from booking_engine.schemas.coupon import CouponValidateRequest, CouponValidationResponse

__all__ = [
    "ShowCreate", "ShowResponse", "ShowListResponse", "SeatMapResponse",
    "BookingCreate", "BookingResponse", "PaymentConfirm", "PaymentOrderResponse",
    "CouponValidateRequest", "CouponValidationResponse",
]
