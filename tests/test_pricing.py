"""Tests for src/workflow/pricing.py: postal-code shipping tiers."""

from __future__ import annotations

import pytest

from src.config import PricingSettings
from src.models.enums import ShippingTier
from src.workflow.pricing import CostCalculator


@pytest.fixture
def calculator():
    return CostCalculator(PricingSettings())


class TestTiers:
    def test_metro_scenario(self, calculator):
        cost = calculator.price("06000")
        assert (cost.shipping_cost, cost.letter_cost, cost.total_cost) == (3000, 2000, 5000)
        assert cost.tier == ShippingTier.METRO

    def test_remote_scenario(self, calculator):
        cost = calculator.price("63000")
        assert cost.shipping_cost == 3500
        assert cost.total_cost == 5500
        assert cost.tier == ShippingTier.REMOTE

    @pytest.mark.parametrize("postal_code", ["57000", "58100", "59999", "64000"])
    def test_remote_prefixes(self, calculator, postal_code):
        assert calculator.tier_for(postal_code) == ShippingTier.REMOTE

    @pytest.mark.parametrize("postal_code", ["01000", "10500", "19999"])
    def test_metro_prefixes(self, calculator, postal_code):
        assert calculator.tier_for(postal_code) == ShippingTier.METRO

    @pytest.mark.parametrize("postal_code", ["09000", "30100", "48000", "99999"])
    def test_unmatched_falls_back_to_standard(self, calculator, postal_code):
        cost = calculator.price(postal_code)
        assert cost.tier == ShippingTier.STANDARD
        assert cost.shipping_cost == 3000


class TestDeterminism:
    @pytest.mark.parametrize("postal_code", ["06000", "63000", "30100"])
    def test_total_is_sum_and_stable(self, calculator, postal_code):
        first = calculator.price(postal_code)
        second = calculator.price(postal_code)
        assert first == second
        assert first.total_cost == first.shipping_cost + first.letter_cost


class TestConfiguredPolicy:
    def test_custom_costs(self):
        pricing = PricingSettings(letter_cost=1000, standard_shipping_cost=2500, remote_zip_prefixes="63")
        calculator = CostCalculator(pricing)
        assert calculator.price("30100").total_cost == 3500
        assert calculator.tier_for("57000") == ShippingTier.STANDARD

    def test_remote_wins_over_metro_on_overlap(self):
        calculator = CostCalculator(PricingSettings(metro_zip_prefixes="06,63", remote_zip_prefixes="63"))
        assert calculator.tier_for("63000") == ShippingTier.REMOTE
