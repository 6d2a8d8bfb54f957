import secrets
import string
import time

_ALPHABET = string.ascii_uppercase + string.digits
_BASE36 = string.digits + string.ascii_uppercase


def _random_string(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def _base36(number: int) -> str:
    digits = ""
    while number:
        number, rem = divmod(number, 36)
        digits = _BASE36[rem] + digits
    return digits or "0"


def generate_reference(prefix: str = "TXN") -> str:
    """Reference shared by every row of one logical operation, e.g. TXNLX3K9Q2A7Z1B4C."""
    millis = int(time.time() * 1000)
    return f"{prefix}{_base36(millis)}{_random_string(8)}"


def generate_receipt_number() -> str:
    millis = int(time.time() * 1000)
    return f"VSE{millis}{secrets.randbelow(1000):03d}"


def generate_account_number() -> str:
    seconds = str(int(time.time()))[-6:]
    return f"VSE{seconds}{_random_string(4)}"
