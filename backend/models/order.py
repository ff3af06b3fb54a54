from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURN_REQUESTED = "return_requested"
    RETURN_APPROVED = "return_approved"
    RETURN_REJECTED = "return_rejected"
    RETURNED = "returned"
    REFUNDED = "refunded"


class PayoutStatus(str, Enum):
    NOT_ELIGIBLE = "not_eligible"
    HELD = "held"              # inside the return window
    READY = "ready"            # window elapsed, unclaimed
    PROCESSING = "processing"  # claimed by a payout transaction
    PAID = "paid"
    FAILED = "failed"          # released back by the payment executor


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class ReturnStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class EarningsBreakdown(BaseModel):
    commission_percent: float
    commission_amount: float
    shipping_cost: float
    cgst: float
    sgst: float
    total_tax: float
    penalty: float = 0
    net_seller_earning: float
    calculated_at: datetime


class PayoutRecord(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    status: PayoutStatus = PayoutStatus.NOT_ELIGIBLE
    scheduled_date: Optional[datetime] = None
    completed_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None


class OrderItem(BaseModel):
    product_id: str
    seller_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class OrderPricing(BaseModel):
    items_total: float = Field(..., ge=0)
    shipping_charge: Optional[float] = None
    tax: float = 0
    discount: float = 0
    total: float = 0


class TrackingInfo(BaseModel):
    courier: str = Field(..., min_length=1)
    tracking_id: str = Field(..., min_length=1)
    url: Optional[str] = None
