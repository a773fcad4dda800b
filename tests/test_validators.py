import pytest

from clinic_billing.shared.validators import (
    is_iso_date,
    mask_sensitive_data,
    normalize_tax_id,
    only_digits,
    validate_https_url,
)


def test_only_digits():
    assert only_digits("987.654.321-00") == "98765432100"
    assert only_digits(None) == ""


def test_normalize_tax_id():
    assert normalize_tax_id("12.345.678/0001-95") == "12345678000195"
    assert normalize_tax_id("---") is None


@pytest.mark.parametrize("url", ["http://erp.test/hooks", "ftp://erp.test", "https://", ""])
def test_insecure_or_incomplete_urls_are_rejected(url):
    with pytest.raises(ValueError):
        validate_https_url(url)


def test_https_url_is_trimmed():
    assert validate_https_url("  https://erp.test/hooks ") == "https://erp.test/hooks"


@pytest.mark.parametrize("value,expected", [("2025-02-12", True), ("2025-02-30", False), ("12/02/2025", False)])
def test_is_iso_date(value, expected):
    assert is_iso_date(value) is expected


def test_mask_sensitive_data():
    assert mask_sensitive_data("aact_1234567890") == "***********7890"
    assert mask_sensitive_data("abc") == "***"
    assert mask_sensitive_data(None) == ""
