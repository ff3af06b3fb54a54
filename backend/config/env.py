import os
from dotenv import load_dotenv

load_dotenv()

# =====================================================
# ENV
# =====================================================
ENV = os.getenv("ENV", "development")

# =====================================================
# DATABASE
# =====================================================
MONGO_URI = os.getenv("MONGO_URI") or os.getenv("MONGODB_URI")

# =====================================================
# COMMISSION / TAX
# =====================================================
DEFAULT_COMMISSION_PERCENT = float(os.getenv("DEFAULT_COMMISSION_PERCENT", 10))
CGST_PERCENT = float(os.getenv("CGST_PERCENT", 9))
SGST_PERCENT = float(os.getenv("SGST_PERCENT", 9))
DEFAULT_SHIPPING_CHARGE = float(os.getenv("DEFAULT_SHIPPING_CHARGE", 40))

# =====================================================
# RETURNS / PAYOUT WINDOW
# =====================================================
RETURN_WINDOW_DAYS = int(os.getenv("RETURN_WINDOW_DAYS", 7))

# --------------------------------------------------
# DATA ENCRYPTION
# --------------------------------------------------
BANK_DATA_ENCRYPTION_KEY = os.getenv("BANK_DATA_ENCRYPTION_KEY")


def validate_production_env() -> None:
    if (ENV or "").lower() != "production":
        return

    required = {
        "MONGODB_URI": MONGO_URI,
        "BANK_DATA_ENCRYPTION_KEY": BANK_DATA_ENCRYPTION_KEY,
    }

    invalid = []
    for key, value in required.items():
        val = (value or "").strip()
        if not val or val.startswith("CHANGE_THIS"):
            invalid.append(key)

    if invalid:
        raise RuntimeError(f"Production env misconfigured. Invalid keys: {', '.join(sorted(invalid))}")

    if not 0 <= DEFAULT_COMMISSION_PERCENT <= 100:
        raise RuntimeError("DEFAULT_COMMISSION_PERCENT must be between 0 and 100")
    if RETURN_WINDOW_DAYS < 0:
        raise RuntimeError("RETURN_WINDOW_DAYS cannot be negative")
