from datetime import datetime

from config.constants import ORDERS
from config.env import (
    DEFAULT_COMMISSION_PERCENT,
    DEFAULT_SHIPPING_CHARGE,
    RETURN_WINDOW_DAYS,
)
from database import get_db
from models.order import EarningsBreakdown
from models.payout import PayoutTransactionCreate
from pydantic import ValidationError
from utils.earnings import calculate_earnings
from utils.earnings_reports import (
    earnings_analytics,
    earnings_summary,
    list_detailed_earnings,
    list_earnings_breakdown,
)
from utils.errors import NotFound, ValidationFailed
from utils.guards import parse_object_id
from utils.order_lifecycle import transition_order
from utils.payouts import (
    complete_payout,
    fail_payout,
    list_payable_orders,
    list_payout_transactions,
    mark_payout_processing,
    release_orphaned_claims,
    request_payout,
)
from utils.serializers import serialize_wallet
from utils.wallet_service import refresh_wallet


class EarningsEngine:
    """
    Seller earnings and payout operations bound to one database.

    The application layer calls these; scheduling (periodic wallet
    refreshes, executing pending payouts) belongs to the caller.
    """

    def __init__(
        self,
        db=None,
        *,
        return_window_days: int = RETURN_WINDOW_DAYS,
        default_commission_percent: float = DEFAULT_COMMISSION_PERCENT,
        default_shipping_charge: float = DEFAULT_SHIPPING_CHARGE,
    ):
        self.db = db if db is not None else get_db()
        self.return_window_days = return_window_days
        self.default_commission_percent = default_commission_percent
        self.default_shipping_charge = default_shipping_charge

    # -----------------------------
    # Earnings
    # -----------------------------

    async def calculate_earnings(self, order_id, *, penalty=None, now: datetime | None = None) -> EarningsBreakdown:
        order = await self.db[ORDERS].find_one({"_id": parse_object_id(order_id, "order_id")})
        if not order:
            raise NotFound("Order not found")

        return await calculate_earnings(
            self.db,
            order,
            penalty=penalty,
            now=now,
            **self._earnings_options(),
        )

    async def transition_order(self, order_id, new_status, **kwargs) -> dict:
        earnings_options = self._earnings_options()
        earnings_options.pop("return_window_days")
        return await transition_order(
            self.db,
            order_id,
            new_status,
            return_window_days=self.return_window_days,
            earnings_options=earnings_options,
            **kwargs,
        )

    # -----------------------------
    # Wallet
    # -----------------------------

    async def refresh_wallet(self, seller_id, *, now: datetime | None = None) -> dict:
        wallet = await refresh_wallet(
            self.db,
            seller_id,
            now=now,
            return_window_days=self.return_window_days,
        )
        return serialize_wallet(wallet)

    # -----------------------------
    # Payouts
    # -----------------------------

    async def request_payout(
        self,
        seller_id,
        order_ids,
        payment_mode: str = "bank",
        *,
        idempotency_key: str | None = None,
        now: datetime | None = None,
    ) -> dict:
        try:
            payload = PayoutTransactionCreate(
                seller_id=str(seller_id),
                order_ids=[str(oid) for oid in order_ids],
                payment_mode=payment_mode,
                idempotency_key=idempotency_key,
            )
        except ValidationError as e:
            raise ValidationFailed(f"Invalid payout request: {e.errors()[0]['msg']}")

        return await request_payout(
            self.db,
            payload.seller_id,
            payload.order_ids,
            payload.payment_mode.value,
            now=now,
            return_window_days=self.return_window_days,
            idempotency_key=payload.idempotency_key,
        )

    async def payable_orders(self, seller_id, *, now: datetime | None = None) -> dict:
        return await list_payable_orders(
            self.db,
            seller_id,
            now=now,
            return_window_days=self.return_window_days,
        )

    async def payout_history(self, seller_id, **kwargs) -> dict:
        return await list_payout_transactions(self.db, seller_id, **kwargs)

    async def mark_payout_processing(self, transaction_id, **kwargs) -> dict:
        return await mark_payout_processing(self.db, transaction_id, **kwargs)

    async def complete_payout(self, transaction_id, **kwargs) -> dict:
        kwargs.setdefault("return_window_days", self.return_window_days)
        return await complete_payout(self.db, transaction_id, **kwargs)

    async def fail_payout(self, transaction_id, reason: str, **kwargs) -> dict:
        kwargs.setdefault("return_window_days", self.return_window_days)
        return await fail_payout(self.db, transaction_id, reason, **kwargs)

    async def release_orphaned_claims(self, **kwargs) -> int:
        return await release_orphaned_claims(self.db, **kwargs)

    # -----------------------------
    # Earnings reports
    # -----------------------------

    async def earnings_breakdown(self, seller_id, *, start=None, end=None) -> dict:
        return await list_earnings_breakdown(self.db, seller_id, start=start, end=end)

    async def earnings_summary(self, seller_id, **kwargs) -> dict:
        return await earnings_summary(self.db, seller_id, **kwargs)

    async def detailed_earnings(self, seller_id, **kwargs) -> dict:
        return await list_detailed_earnings(self.db, seller_id, **kwargs)

    async def earnings_analytics(self, seller_id, *, now: datetime | None = None) -> dict:
        return await earnings_analytics(self.db, seller_id, now=now)

    def _earnings_options(self) -> dict:
        return {
            "return_window_days": self.return_window_days,
            "default_commission_percent": self.default_commission_percent,
            "default_shipping_charge": self.default_shipping_charge,
        }
