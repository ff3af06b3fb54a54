import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken

from config.env import BANK_DATA_ENCRYPTION_KEY
from utils.errors import EngineError, ValidationFailed


def _build_fernet() -> Fernet:
    seed = (BANK_DATA_ENCRYPTION_KEY or "").strip()
    if not seed:
        raise EngineError("Bank data encryption key is not configured")
    key = base64.urlsafe_b64encode(hashlib.sha256(seed.encode("utf-8")).digest())
    return Fernet(key)


def encrypt_sensitive_value(value: str) -> str:
    if not value:
        raise ValidationFailed("Sensitive value missing")
    token = _build_fernet().encrypt(value.encode("utf-8"))
    return token.decode("utf-8")


def decrypt_sensitive_value(token: str) -> str:
    if not token:
        raise ValidationFailed("Encrypted sensitive value missing")
    try:
        raw = _build_fernet().decrypt(token.encode("utf-8"))
    except InvalidToken:
        raise ValidationFailed("Invalid encrypted sensitive value")
    return raw.decode("utf-8")


def mask_account_number(value: str, visible: int = 4) -> str:
    value = (value or "").strip()
    if len(value) <= visible:
        return value
    return "X" * (len(value) - visible) + value[-visible:]
