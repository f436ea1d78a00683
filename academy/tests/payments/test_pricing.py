from decimal import Decimal
from unittest import mock

import requests
from django.core.cache import cache
from django.test import TestCase

from academy.payments.models import PaymentToken
from academy.payments.services import pricing
from academy.tests.utils import create_token


class FeeSplitTests(TestCase):
    def test_default_split(self):
        split = pricing.split_fees(50_000_000, 20, 20)
        self.assertEqual(split["platform_amount"], 10_000_000)
        self.assertEqual(split["instructor_amount"], 40_000_000)
        self.assertEqual(split["revenue_split_amount"], 2_000_000)

    def test_rounding_remainder_goes_to_instructor(self):
        split = pricing.split_fees(999, 15, 50)
        self.assertEqual(split["platform_amount"], 149)
        self.assertEqual(split["instructor_amount"], 850)
        self.assertEqual(split["platform_amount"] + split["instructor_amount"], 999)
        self.assertEqual(split["revenue_split_amount"], 74)


class TokenAmountTests(TestCase):
    def test_stablecoin_amount_in_base_units(self):
        self.assertEqual(pricing.token_amount(Decimal("50"), Decimal("1"), 6), 50_000_000)

    def test_eighteen_decimal_token(self):
        amount = pricing.token_amount(Decimal("50"), Decimal("2500"), 18)
        self.assertEqual(amount, 20_000_000_000_000_000)

    def test_non_positive_price_rejected(self):
        with self.assertRaises(ValueError):
            pricing.token_amount(Decimal("50"), Decimal("0"), 6)

    def test_units_back_to_usd(self):
        self.assertEqual(pricing.token_units_to_usd(20_000_000_000_000_000, Decimal("2500"), 18), Decimal("50.00"))


class TokenPriceTests(TestCase):
    def setUp(self):
        cache.clear()
        self.eth = create_token(
            symbol="eth",
            name="Ether",
            decimals=18,
            is_stablecoin=False,
            price_oracle_type=PaymentToken.PriceOracle.COINGECKO,
            coingecko_id="ethereum",
            fixed_usd_price=Decimal("2000"),
        )

    def test_stablecoin_uses_fixed_price(self):
        usdc = create_token()
        with mock.patch("academy.payments.services.pricing.requests.get") as get:
            self.assertEqual(pricing.token_price_usd(usdc), Decimal("1.0"))
        get.assert_not_called()

    @mock.patch("academy.payments.services.pricing.requests.get")
    def test_oracle_price_is_cached(self, get):
        get.return_value.json.return_value = {"ethereum": {"usd": 2500.5}}

        self.assertEqual(pricing.token_price_usd(self.eth), Decimal("2500.5"))
        self.assertEqual(pricing.token_price_usd(self.eth), Decimal("2500.5"))
        get.assert_called_once()

    @mock.patch("academy.payments.services.pricing.requests.get")
    def test_oracle_failure_falls_back_to_fixed_price(self, get):
        get.side_effect = requests.ConnectionError("down")
        self.assertEqual(pricing.token_price_usd(self.eth), Decimal("2000"))

    @mock.patch("academy.payments.services.pricing.requests.get")
    def test_missing_quote_falls_back_to_fixed_price(self, get):
        get.return_value.json.return_value = {}
        self.assertEqual(pricing.token_price_usd(self.eth), Decimal("2000"))

    def test_price_endpoint(self):
        usdc = create_token()
        response = self.client.get(f"/api/academy/payments/tokens/{usdc.pk}/price/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["symbol"], "USDC")
        self.assertEqual(Decimal(response.json()["price_usd"]), Decimal("1"))
