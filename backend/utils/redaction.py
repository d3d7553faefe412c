"""PII redaction for statement text before it leaves the server.

Substitutions run in a fixed order. Every placeholder is letters, brackets and
underscores only, so no digit pattern can re-match it, and the labeled-field
patterns refuse to consume a value that already starts with a placeholder.
That keeps redact() idempotent: redact(redact(t)) == redact(t).

Transaction descriptions, dates and amounts are deliberately left alone; the
classifier needs them.
"""
import re
from typing import List, Tuple

_NOT_ALREADY_REDACTED = r"(?![ \t]*\[REDACTED_)"

_NAME_LABELS = (
    "Account Holder|Customer Name|Full Name|Name|Holder|Client|Titular|"
    "Beneficiary|Payee|Nominee|Authorized"
)
_ADDRESS_LABELS = (
    "Home Address|Mailing Address|Billing Address|Registered Address|"
    "My Address|Address|Residence|Correspondence"
)

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
CARD_PATTERN = re.compile(r"\b(?:\d{4}[ -]?){3,4}\d{3,4}\b")
ACCOUNT_PATTERN = re.compile(r"\b(?:\d{4}[ -]?){2,5}\d{4}\b|\b\d{8,20}\b")
SSN_PATTERN = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
PAN_PATTERN = re.compile(r"\b[A-Z]{5}\d{4}[A-Z]\b")
PHONE_PATTERN = re.compile(
    r"(?<!\w)(?:\+\d{1,4}[ .-]?)?\(?\d{2,5}\)?[ .-]?\d{3,5}[ .-]?\d{3,6}(?!\w)"
)

# (pattern, replacement) in application order
_SUBSTITUTIONS: List[Tuple[re.Pattern, str]] = [
    (EMAIL_PATTERN, "[REDACTED_EMAIL]"),
    (
        re.compile(
            rf"\b({_NAME_LABELS})[ \t]*[:=][ \t]*{_NOT_ALREADY_REDACTED}[A-Za-zÀ-ÿ' \-]{{3,40}}",
            re.IGNORECASE,
        ),
        r"\1: [REDACTED_NAME]",
    ),
    (
        re.compile(
            rf"\b(Dear|Welcome)[ \t]+{_NOT_ALREADY_REDACTED}[A-Za-zÀ-ÿ'\-]+(?:[ \t]+[A-Za-zÀ-ÿ'\-]+)?",
            re.IGNORECASE,
        ),
        r"\1 [REDACTED_NAME]",
    ),
    (
        re.compile(
            rf"\b({_ADDRESS_LABELS})[ \t]*[:=][ \t]*{_NOT_ALREADY_REDACTED}[^\n\r]{{10,120}}",
            re.IGNORECASE,
        ),
        r"\1: [REDACTED_ADDRESS]",
    ),
    (SSN_PATTERN, "[REDACTED_SSN]"),
    (PAN_PATTERN, "[REDACTED_PAN]"),
    (CARD_PATTERN, "[REDACTED_CARD]"),
    (ACCOUNT_PATTERN, "[REDACTED_ACCOUNT]"),
    (PHONE_PATTERN, "[REDACTED_PHONE]"),
]


def redact(text: str) -> str:
    """Replace account numbers, names, addresses, phones, emails and IDs with placeholders."""
    if not text:
        return ""
    redacted = text
    for pattern, replacement in _SUBSTITUTIONS:
        redacted = pattern.sub(replacement, redacted)
    return redacted
