import re

MIN_IDENTITY_LENGTH = 3

_NON_DIGITS = re.compile(r"[^0-9]")


def normalize_identity(value: object) -> str:
    """Canonical chat identity: digits only, no '+', spaces or dashes."""
    if value is None:
        return ""
    return _NON_DIGITS.sub("", str(value))


def is_valid_identity(identity: str) -> bool:
    return len(identity) >= MIN_IDENTITY_LENGTH
