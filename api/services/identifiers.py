"""
Identifier utilities for contact resolution.

Cleans raw email / phone values from requests before they are matched
against stored contacts. Matching is exact unless normalization is asked for.
"""
import re
from typing import Optional, Union

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


def _as_text(raw: Union[str, int, None]) -> Optional[str]:
    if raw is None or isinstance(raw, bool):
        return None
    text = str(raw).strip()
    return text or None


def clean_email(raw: Optional[str], normalize: bool = False) -> Optional[str]:
    """
    Clean an email value.

    Args:
        raw: Email as submitted (may be None or blank)
        normalize: Lower-case the address

    Returns:
        Stripped email, or None if nothing usable was supplied

    Examples:
        >>> clean_email("  a@x.com ")
        'a@x.com'
        >>> clean_email("A@X.com", normalize=True)
        'a@x.com'
        >>> clean_email("   ") is None
        True
    """
    email = _as_text(raw)
    if email is None:
        return None
    return email.lower() if normalize else email


def clean_phone(raw: Union[str, int, None], normalize: bool = False) -> Optional[str]:
    """
    Clean a phone number value.

    JSON clients often send phone numbers as integers; those are turned
    into strings so they match stored values.

    Args:
        raw: Phone number as submitted (str, int, None or blank)
        normalize: Strip everything but digits (a leading '+' is kept)

    Returns:
        Phone string, or None if nothing usable was supplied

    Examples:
        >>> clean_phone(123456)
        '123456'
        >>> clean_phone("(901) 229-5017", normalize=True)
        '9012295017'
        >>> clean_phone("+1 901 229 5017", normalize=True)
        '+19012295017'
    """
    phone = _as_text(raw)
    if phone is None or not normalize:
        return phone

    digits = re.sub(r'\D', '', phone)
    if not digits:
        return None
    return f"+{digits}" if phone.startswith('+') else digits


def is_valid_email(email: Optional[str]) -> bool:
    """
    Loose shape check for an email address (something@domain.tld).

    Args:
        email: Email to check

    Returns:
        True if it looks like an address
    """
    if not email:
        return False
    return bool(EMAIL_PATTERN.match(email))
