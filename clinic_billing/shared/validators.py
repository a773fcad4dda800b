"""Shared validation utilities"""

import re
from datetime import date, datetime
from typing import Optional
from urllib.parse import urlparse


def only_digits(value: Optional[str]) -> str:
    """Strip everything but digits (CPF/CNPJ, phone, postal code)"""
    if not value:
        return ""
    return re.sub(r"\D", "", str(value))


def normalize_tax_id(tax_id: Optional[str]) -> Optional[str]:
    """
    Normalize a CPF/CNPJ to digits only.

    Returns:
        Digits-only tax id, or None when nothing usable is left
    """
    digits = only_digits(tax_id)
    return digits or None


def validate_https_url(url: str) -> str:
    """
    Validate that a webhook URL uses secure transport.

    Raises:
        ValueError: If the URL is not an absolute https URL
    """
    if not url or not isinstance(url, str):
        raise ValueError("URL is required")

    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme != "https":
        raise ValueError("URL must use HTTPS")
    if not parsed.netloc:
        raise ValueError("URL must include a host")

    return url


def is_iso_date(value: str) -> bool:
    """Check a YYYY-MM-DD string"""
    if not isinstance(value, str) or not re.match(r"^\d{4}-\d{2}-\d{2}$", value):
        return False
    try:
        datetime.strptime(value, "%Y-%m-%d")
        return True
    except ValueError:
        return False


def format_iso_date(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def mask_sensitive_data(data: Optional[str], visible_chars: int = 4) -> str:
    """
    Mask sensitive data for logging/display

    Args:
        data: Sensitive data to mask
        visible_chars: Number of characters to show at the end
    """
    if not data:
        return ""
    if len(data) <= visible_chars:
        return "*" * len(data)

    return "*" * (len(data) - visible_chars) + data[-visible_chars:]
