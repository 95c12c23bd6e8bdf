"""
Unit tests for payment request parsing and link building.
"""

import pytest

from vaulton.payment_request import (
    build_send_link,
    build_stellar_pay_uri,
    parse_payment_request,
    sanitize_amount,
    short_address,
)

RECIPIENT = "GBRPYHIL2CI3FNQ4BXLFMNDLFJUNPU2HY3ZMFSHONUCEOASW7QC7OX2H"


class TestParsePaymentRequest:
    """Test recognition of scanned and pasted payment data."""

    def test_empty(self):
        request = parse_payment_request("   ")

        assert request.source == "empty"
        assert request.recipient == ""

    def test_json(self):
        request = parse_payment_request(f'{{"destination": "{RECIPIENT}", "amount": "2.5"}}')

        assert request.source == "json"
        assert request.recipient == RECIPIENT
        assert request.amount == "2.5"

    def test_json_with_bad_amount(self):
        request = parse_payment_request(f'{{"recipient": "{RECIPIENT}", "amount": "-3"}}')

        assert request.recipient == RECIPIENT
        assert request.amount == ""

    def test_stellar_uri(self):
        request = parse_payment_request(f"stellar:pay?destination={RECIPIENT}&amount=10.25")

        assert request.source == "stellar-uri"
        assert request.recipient == RECIPIENT
        assert request.amount == "10.25"

    def test_web_stellar_uri(self):
        request = parse_payment_request(f"web+stellar:pay?destination={RECIPIENT}")

        assert request.source == "stellar-uri"
        assert request.recipient == RECIPIENT

    def test_send_link(self):
        request = parse_payment_request(f"https://app.example.com/send?to={RECIPIENT}&value=3")

        assert request.source == "https:"
        assert request.recipient == RECIPIENT
        assert request.amount == "3"

    def test_bare_address_with_amount(self):
        request = parse_payment_request(f"pay {RECIPIENT} amount = 4.20 please")

        assert request.source == "address"
        assert request.recipient == RECIPIENT
        assert request.amount == "4.20"

    def test_unknown(self):
        request = parse_payment_request("hello world")

        assert request.source == "unknown"
        assert request.recipient == ""

    def test_round_trip_through_built_links(self):
        uri = build_stellar_pay_uri(RECIPIENT, "7.5")
        assert parse_payment_request(uri).amount == "7.5"

        link = build_send_link("https://vaulton.example", RECIPIENT, "1")
        request = parse_payment_request(link)
        assert request.recipient == RECIPIENT
        assert request.amount == "1"


class TestBuilders:
    """Test link builders and display helpers."""

    def test_stellar_pay_uri(self):
        assert build_stellar_pay_uri(RECIPIENT, "5") == f"stellar:pay?destination={RECIPIENT}&amount=5"
        assert build_stellar_pay_uri(RECIPIENT, "abc") == f"stellar:pay?destination={RECIPIENT}"
        assert build_stellar_pay_uri("") == ""

    def test_send_link(self):
        link = build_send_link("https://vaulton.example/", RECIPIENT, "2")

        assert link.startswith("https://vaulton.example/dashboard?tab=send&recipient=")
        assert "amount=2" in link
        assert link.endswith("source=vaulton_request")
        assert build_send_link("", RECIPIENT) == ""

    @pytest.mark.parametrize("value,expected", [("1", "1"), (" 2.50 ", "2.50"), ("1.", ""), (None, ""), ("x", "")])
    def test_sanitize_amount(self, value, expected):
        assert sanitize_amount(value) == expected

    def test_short_address(self):
        assert short_address(RECIPIENT) == "GBRPYHIL...7QC7OX2H"
        assert short_address(RECIPIENT, start=4, end=4) == "GBRP...OX2H"
        assert short_address("GABC") == "GABC"
        assert short_address(None) == "-"
