"""Pure helpers for phones, OTP codes and invite codes found in chat text. No I/O."""

from __future__ import annotations

import re

PHONE_IN_TEXT_RE = re.compile(r"\+?\d[\d\s\-\(\)]{6,20}\d")
# OTPs are 6 alphanumerics, e.g. ABC123; may be wrapped as ~*ABC123*~.
OTP_RE = re.compile(r"(?<![A-Za-z0-9])([A-Za-z0-9]{6})(?![A-Za-z0-9])")
WRAPPED_OTP_RE = re.compile(r"~\*\s*([A-Za-z0-9]{6})\s*\*~")
INVITE_WORD_RE = re.compile(r"\b(aceptar|rechazar)\s+([A-Za-z0-9]{8})\b", re.IGNORECASE)


def normalize_phone(value: str) -> str:
    """Digits only: '+591 772-42197' -> '59177242197'."""
    return re.sub(r"\D", "", value or "")


def validate_phone(value: str) -> tuple[bool, str]:
    """Return (is_valid, error_message)."""
    digits = normalize_phone(value)
    if not digits:
        return False, "Phone number is required."
    if len(digits) < 8 or len(digits) > 15:
        return False, "Please enter a valid phone number (8 to 15 digits)."
    return True, ""


def extract_phone(text: str) -> str | None:
    """First phone-looking run in free text, normalized; None if nothing valid."""
    for m in PHONE_IN_TEXT_RE.finditer(text or ""):
        ok, _ = validate_phone(m.group(0))
        if ok:
            return normalize_phone(m.group(0))
    return None


def extract_otp(text: str) -> str | None:
    """
    Pull a 6-character verification code out of a message like
    'mi codigo de verificacion es ABC123'. Wrapped codes win; otherwise the
    first 6-char token containing a digit (plain words are not codes).
    """
    text = text or ""
    m = WRAPPED_OTP_RE.search(text)
    if m:
        return m.group(1).upper()
    for m in OTP_RE.finditer(text):
        candidate = m.group(1)
        if any(c.isdigit() for c in candidate):
            return candidate.upper()
    return None


def extract_invite_reply(text: str) -> tuple[bool, str] | None:
    """'ACEPTAR ABCD1234' -> (True, 'ABCD1234'); 'RECHAZAR ...' -> (False, code)."""
    m = INVITE_WORD_RE.search(text or "")
    if not m:
        return None
    return m.group(1).lower() == "aceptar", m.group(2).upper()
