"""Cost calculator: shipping tier by postal-code prefix plus a fixed letter fee.

Pure integer arithmetic, no I/O. Tiers:
  metro    → Seoul / Gyeonggi / Incheon prefixes
  remote   → Jeju and island areas
  standard → everything else (fallback)
"""

from __future__ import annotations

from src.config import PricingSettings, settings
from src.models.enums import ShippingTier
from src.schemas.requests import CostBreakdown


class CostCalculator:
    """Prices a request from its normalized postal code."""

    def __init__(self, pricing: PricingSettings | None = None) -> None:
        pricing = pricing or settings.pricing
        self.letter_cost = pricing.letter_cost
        self._tier_costs: dict[ShippingTier, int] = {
            ShippingTier.METRO: pricing.metro_shipping_cost,
            ShippingTier.STANDARD: pricing.standard_shipping_cost,
            ShippingTier.REMOTE: pricing.remote_shipping_cost,
        }
        self._prefix_tiers: dict[str, ShippingTier] = {}
        for prefix in pricing.metro_prefixes:
            self._prefix_tiers[prefix] = ShippingTier.METRO
        # remote wins if a prefix is listed in both
        for prefix in pricing.remote_prefixes:
            self._prefix_tiers[prefix] = ShippingTier.REMOTE

    def tier_for(self, postal_code: str) -> ShippingTier:
        return self._prefix_tiers.get(postal_code[:2], ShippingTier.STANDARD)

    def price(self, postal_code: str) -> CostBreakdown:
        """Return the cost breakdown for one letter shipped to ``postal_code``."""
        tier = self.tier_for(postal_code)
        shipping_cost = self._tier_costs[tier]
        return CostBreakdown(
            shipping_cost=shipping_cost,
            letter_cost=self.letter_cost,
            total_cost=shipping_cost + self.letter_cost,
            tier=tier,
        )


def price(postal_code: str) -> CostBreakdown:
    """Price with the configured tiers."""
    return CostCalculator().price(postal_code)
