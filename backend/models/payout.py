from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime
from enum import Enum
from bson import ObjectId


class PaymentMode(str, Enum):
    BANK = "bank"
    UPI = "upi"
    WALLET = "wallet"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentDetails(BaseModel):
    """Destination copied onto the transaction when it is created."""

    account_holder_name: Optional[str] = None
    bank_account_masked: Optional[str] = None
    bank_account_encrypted: Optional[str] = None
    ifsc_code: Optional[str] = None
    bank_name: Optional[str] = None
    upi_id: Optional[str] = None


class PayoutBreakdown(BaseModel):
    total_orders: int = 0
    total_sales: float = 0
    total_commission: float = 0
    total_tax: float = 0
    total_shipping: float = 0
    net_amount: float = 0


class PayoutTransactionCreate(BaseModel):
    seller_id: str
    order_ids: list[str] = Field(default_factory=list)
    payment_mode: PaymentMode = PaymentMode.BANK
    idempotency_key: Optional[str] = None


class PayoutTransactionInDB(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True, arbitrary_types_allowed=True)

    transaction_number: str
    seller_id: ObjectId
    orders: list[ObjectId]
    payment_mode: PaymentMode
    payment_details: PaymentDetails
    amount: float = Field(..., ge=0)
    breakdown: PayoutBreakdown
    status: TransactionStatus = TransactionStatus.PENDING

    initiated_at: datetime
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None

    failure_reason: Optional[str] = None
    failure_code: Optional[str] = None
    gateway_transaction_id: Optional[str] = None
    processed_by: Optional[str] = None
