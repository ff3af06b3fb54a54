from pydantic import BaseModel
from typing import Optional


class BankDetails(BaseModel):
    account_holder_name: Optional[str] = None
    bank_account_number: Optional[str] = None
    bank_account_encrypted: Optional[str] = None
    bank_account_masked: Optional[str] = None
    ifsc_code: Optional[str] = None
    bank_name: Optional[str] = None
    upi_id: Optional[str] = None
    is_verified: bool = False


class SellerInDB(BaseModel):
    role: str = "seller"

    # seller payout contract
    commission_percent: float = 0
    bank_details: Optional[BankDetails] = None
