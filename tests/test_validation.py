"""Tests for ABN and BSB checks."""

import pytest

from tradie_invoices.invoicing.validation import (
    format_abn,
    format_bsb,
    validate_abn,
    validate_bsb,
)


class TestABN:
    @pytest.mark.parametrize("abn", ["51824753556", "51 824 753 556", "53 004 085 616"])
    def test_valid(self, abn):
        assert validate_abn(abn) is True

    @pytest.mark.parametrize("abn", ["51824753557", "1234567890", "5182475355a", ""])
    def test_invalid(self, abn):
        assert validate_abn(abn) is False

    def test_format(self):
        assert format_abn("51824753556") == "51 824 753 556"
        assert format_abn("123") == "123"


class TestBSB:
    @pytest.mark.parametrize("bsb", ["062000", "062-000", "062 000"])
    def test_valid(self, bsb):
        assert validate_bsb(bsb) is True

    @pytest.mark.parametrize("bsb", ["06200", "0620001", "06a-000"])
    def test_invalid(self, bsb):
        assert validate_bsb(bsb) is False

    def test_format(self):
        assert format_bsb("062000") == "062-000"
        assert format_bsb("062 000") == "062-000"
