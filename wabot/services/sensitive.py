"""Lightweight detection of secrets users paste into chat (OTP, card number, password).

Card candidates must pass the Luhn checksum, which keeps ordinary phone and order
numbers from being flagged.
"""

import re
from enum import Enum
from typing import Optional


class SensitiveKind(str, Enum):
    CARD = "CARD"
    OTP = "OTP"
    PASSWORD = "PASSWORD"


SENSITIVE_WARNING = (
    "Kak, demi keamanan jangan kirim OTP / password / nomor kartu ya 🙏\n"
    "Kalau tadi terlanjur terkirim, sebaiknya diabaikan & jangan dipakai lagi."
)

OTP_KEYWORDS = re.compile(r"(otp|kode|code|verifikasi|verification|login|masuk)")
PASSWORD_PATTERN = re.compile(r"(password|pass|pin|pwd)\s*[:=]")
# digit groups joined by single spaces or dashes, e.g. "4111 1111-1111 1111"
GROUPED_DIGITS = re.compile(r"[0-9]+(?:[ -][0-9]+)*")
CARD_MIN_DIGITS = 13
CARD_MAX_DIGITS = 19
MASKABLE_RUN = re.compile(r"[0-9]{4,}")
NON_DIGIT = re.compile(r"[^0-9]")


def luhn_check(digits: str) -> bool:
    """Luhn mod-10 checksum over a digits-only string."""
    if not digits or not digits.isascii() or not digits.isdigit():
        return False
    total = 0
    double = False
    for char in reversed(digits):
        digit = ord(char) - 48
        if double:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
        double = not double
    return total % 10 == 0


def digit_runs(text: str) -> list[str]:
    return NON_DIGIT.sub(" ", text).split()


def _card_spans(groups: list[str]):
    """Every contiguous run of whole groups holding 13-19 digits."""
    for start in range(len(groups)):
        digits = ""
        for group in groups[start:]:
            digits += group
            if len(digits) > CARD_MAX_DIGITS:
                break
            if len(digits) >= CARD_MIN_DIGITS:
                yield digits


def looks_like_card_number(text: str) -> bool:
    for match in GROUPED_DIGITS.finditer(text):
        groups = re.split(r"[ -]", match.group(0))
        if any(luhn_check(digits) for digits in _card_spans(groups)):
            return True
    return False


def looks_like_otp(text: str) -> bool:
    runs = digit_runs(text)
    if any(len(run) == 6 for run in runs):
        return True
    has_keyword = OTP_KEYWORDS.search(text.lower()) is not None
    return has_keyword and any(4 <= len(run) <= 8 for run in runs)


def looks_like_password(text: str) -> bool:
    return PASSWORD_PATTERN.search(text.lower()) is not None


def classify(text: Optional[str]) -> Optional[SensitiveKind]:
    """Return the first matching kind in CARD > OTP > PASSWORD order, or None."""
    if not text:
        return None
    if looks_like_card_number(text):
        return SensitiveKind.CARD
    if looks_like_otp(text):
        return SensitiveKind.OTP
    if looks_like_password(text):
        return SensitiveKind.PASSWORD
    return None


def _mask_run(match: re.Match) -> str:
    run = match.group(0)
    if len(run) <= 4:
        return "****"
    return "*" * (len(run) - 2) + run[-2:]


def mask(text: Optional[str]) -> str:
    """Hide every run of 4+ digits except its last two digits."""
    if not text:
        return ""
    return MASKABLE_RUN.sub(_mask_run, text)
