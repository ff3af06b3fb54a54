from pydantic import BaseModel, Field, model_validator
from typing import Optional
from datetime import datetime


class WalletStats(BaseModel):
    total_orders: int = 0
    delivered_orders: int = 0
    returned_orders: int = 0


class WalletSnapshot(BaseModel):
    """
    Derived view of a seller's earnings. Rebuilt from orders and payout
    transactions on every refresh; never the ledger of record.
    """

    pending_amount: float = 0
    upcoming_payout: float = 0
    completed_payout: float = 0
    total_earnings: float = 0

    last_payout_date: Optional[datetime] = None
    last_payout_amount: float = 0
    next_payout_date: Optional[datetime] = None

    pending_order_ids: list[str] = Field(default_factory=list)
    upcoming_order_ids: list[str] = Field(default_factory=list)

    stats: WalletStats = Field(default_factory=WalletStats)

    @model_validator(mode="after")
    def check_total(self):
        expected = round(self.pending_amount + self.upcoming_payout + self.completed_payout, 2)
        if round(self.total_earnings, 2) != expected:
            raise ValueError("total_earnings must equal pending + upcoming + completed")
        return self
