# backend/config/constants.py

# -----------------------------
# COLLECTIONS
# -----------------------------

ORDERS = "orders"
SELLERS = "users"
CATEGORIES = "categories"
PRODUCTS = "products"
SELLER_WALLETS = "seller_wallets"
PAYOUT_TRANSACTIONS = "payout_transactions"

# -----------------------------
# MONEY
# -----------------------------

MAX_COMMISSION_PERCENT = 100
SECONDS_PER_DAY = 60 * 60 * 24

# -----------------------------
# PAYOUT
# -----------------------------

PAYOUT_TRANSACTION_PREFIX = "PAYOUT"
PAYOUT_HISTORY_MAX_LIMIT = 100
# Claims older than this with no transaction behind them are orphans
CLAIM_STALE_SECONDS = 60 * 10

# -----------------------------
# EARNINGS REPORTS
# -----------------------------

EARNINGS_PAGE_MAX_LIMIT = 100
EARNINGS_SUMMARY_MONTHS = 6
