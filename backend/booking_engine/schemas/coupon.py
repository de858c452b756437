"""
Pydantic schemas for coupon validation.
"""

from typing import Optional
from pydantic import BaseModel, Field


class CouponValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    show_id: int
    amount: float = Field(..., ge=0)


class CouponValidationResponse(BaseModel):
    code: str
    valid: bool
    discount: float
    final_amount: float
    reason: Optional[str] = None
    discount_type: Optional[str] = None


class ApplicableCouponsResponse(BaseModel):
    coupons: list[CouponValidationResponse]
