import re

from vsend.exceptions import InvalidPhoneNumberError

_SEPARATORS = re.compile(r"[\s\-\(\)]")
# +233 XX XXX XXXX or 0XX XXX XXXX with a known network prefix
GHANA_PHONE = re.compile(r"^(\+233|233|0)?(20|23|24|25|26|27|28|50|51|52|53|54|55|56|57|59)\d{7}$")
# Any 10-digit local number is accepted for already registered users
LOCAL_PHONE = re.compile(r"^0\d{9}$")


def clean_phone(phone: str) -> str:
    return _SEPARATORS.sub("", phone or "")


def is_valid_phone(phone: str) -> bool:
    cleaned = clean_phone(phone)
    return bool(GHANA_PHONE.match(cleaned) or LOCAL_PHONE.match(cleaned))


def normalize_phone(phone: str) -> str:
    """
    Returns the local 0XXXXXXXXX form used as the lookup key for users.
    """
    cleaned = clean_phone(phone)
    if cleaned.startswith("+233"):
        cleaned = "0" + cleaned[4:]
    elif cleaned.startswith("233") and len(cleaned) == 12:
        cleaned = "0" + cleaned[3:]
    elif len(cleaned) == 9 and not cleaned.startswith("0"):
        cleaned = "0" + cleaned

    if not LOCAL_PHONE.match(cleaned):
        raise InvalidPhoneNumberError()
    return cleaned
