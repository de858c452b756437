"""
Promotional coupon rules.

Allow-list columns (`applicable_*`) hold JSON lists; NULL or an empty list
means the coupon is not restricted on that dimension.
"""

import enum

from sqlalchemy import JSON, Boolean, CheckConstraint, Column, Enum, Float, Integer, String
from sqlalchemy.orm import validates

from booking_engine.db.base import Base, TimestampMixin, UTCDateTime


def normalize_code(code: str) -> str:
    """Coupon codes are case-insensitive; they are stored trimmed and upper-cased."""
    return code.strip().upper()


class DiscountType(str, enum.Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class CouponStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    DEPLETED = "DEPLETED"


class Coupon(Base, TimestampMixin):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), nullable=False, unique=True, index=True)
    discount_type = Column(Enum(DiscountType, native_enum=False, length=20), nullable=False)
    value = Column(Float, nullable=False)  # percent for PERCENTAGE, amount for FIXED
    min_booking_amount = Column(Float, nullable=True)
    max_discount = Column(Float, nullable=True)
    valid_from = Column(UTCDateTime, nullable=False)
    valid_until = Column(UTCDateTime, nullable=False)

    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    usage_per_user = Column(Integer, nullable=True)
    first_booking_only = Column(Boolean, nullable=False, default=False)
    status = Column(Enum(CouponStatus, native_enum=False, length=20), nullable=False, default=CouponStatus.ACTIVE)

    applicable_movies = Column(JSON, nullable=True)
    applicable_theaters = Column(JSON, nullable=True)
    applicable_experiences = Column(JSON, nullable=True)
    applicable_cities = Column(JSON, nullable=True)

    __table_args__ = (
        CheckConstraint("value > 0", name="check_coupon_value_positive"),
        CheckConstraint("usage_count >= 0", name="check_coupon_usage_non_negative"),
    )

    @validates("code")
    def _normalize_code(self, key, value):
        return normalize_code(value) if value is not None else value

    def __repr__(self) -> str:
        return f"<Coupon(code={self.code}, type={self.discount_type}, value={self.value}, status={self.status})>"
