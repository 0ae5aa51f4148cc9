#!/usr/bin/env python3
"""
Naming Service - human readable circle names and descriptions.

Name format: "{Neighborhood} {Life Stage} ({Spending Label})". The
spending parenthetical is omitted for generic categories. Naming is
cosmetic and never raises; missing data falls back to a placeholder.
"""

import logging
import re
from collections import defaultdict
from typing import Optional, Sequence

from core.config_loader import NamingConfig
from core.geo.resolver import GeoResolver, normalize_postal_code
from core.matcher.models import UserProfile

logger = logging.getLogger(__name__)

SPENDING_LABELS = {
    'budget-conscious': 'Budget Savers',
    'organic-focused': 'Organic Buyers',
    'bulk-buyer': 'Bulk Shoppers',
    'premium': 'Premium Shoppers',
    'convenience': 'Convenience Shoppers',
    'family-oriented': 'Family Shoppers',
    'health-focused': 'Health-Focused Shoppers',
}


def format_life_stage(life_stage: Optional[str], default: str = "Community") -> str:
    """young_professionals -> Young Professionals"""
    if not life_stage:
        return default
    text = ' '.join(life_stage.replace('_', ' ').split())
    return re.sub(r'\b\w', lambda m: m.group().upper(), text) or default


def format_spending_pattern(category: str) -> str:
    return SPENDING_LABELS.get(category, category)


def dominant_spending_category(users: Sequence[UserProfile]) -> Optional[str]:
    """Category with the largest summed frequency score across the group."""
    totals = defaultdict(float)
    for user in users:
        for pattern in user.spending_patterns:
            totals[pattern.category] += pattern.frequency or 0.0
    if not totals:
        return None
    # Ties resolve to the first category seen
    return max(totals.items(), key=lambda kv: kv[1])[0]


class NamingService:
    """Derives circle names/descriptions from members' location and profile."""

    def __init__(self, config: Optional[NamingConfig] = None, resolver: Optional[GeoResolver] = None):
        self.config = config or NamingConfig()
        self.resolver = resolver

    def neighborhood(self, postal_code: Optional[str]) -> str:
        """Cached city, then cached region, then postal prefix table, then placeholder."""
        code = normalize_postal_code(postal_code)
        if not code:
            return self.config.placeholder

        if self.resolver is not None:
            try:
                cached = self.resolver.cached_location(code)
                if cached is not None:
                    if cached.city:
                        return cached.city
                    if cached.region:
                        return cached.region
            except Exception as e:
                logger.warning(f"Neighborhood lookup failed for {code}: {e}")

        return self.city_from_prefix(code)

    def city_from_prefix(self, postal_code: Optional[str]) -> str:
        code = normalize_postal_code(postal_code)
        if not code:
            return self.config.placeholder
        return self.config.prefix_city_map.get(code[0], self.config.placeholder)

    def circle_name(self, founder: UserProfile, members: Sequence[UserProfile]) -> str:
        try:
            everyone = [founder, *members]
            name = f"{self.neighborhood(founder.postal_code)} {format_life_stage(founder.life_stage)}"

            dominant = dominant_spending_category(everyone)
            if dominant and dominant not in self.config.generic_spending_categories:
                name += f" ({format_spending_pattern(dominant)})"
            return name
        except Exception as e:
            logger.warning(f"Falling back to placeholder circle name: {e}")
            return f"{self.config.placeholder} {format_life_stage(None)}"

    def circle_description(self, founder: UserProfile, members: Sequence[UserProfile]) -> str:
        try:
            everyone = [founder, *members]
            neighborhood = self.city_from_prefix(founder.postal_code)
            life_stage = format_life_stage(founder.life_stage, default="Neighbors")

            description = (
                f"A community of {len(everyone)} {life_stage} in {neighborhood}, "
                f"sharing similar shopping preferences "
            )
            dominant = dominant_spending_category(everyone)
            if dominant:
                description += f"with a focus on {format_spending_pattern(dominant).lower()} "
            description += "to save money together through group buying and local deals."
            return description
        except Exception as e:
            logger.warning(f"Falling back to placeholder circle description: {e}")
            return f"A {self.config.placeholder.lower()} community saving money together through group buying."
