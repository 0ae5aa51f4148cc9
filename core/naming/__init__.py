"""Naming Module - circle names and descriptions."""
from core.naming.service import NamingService, format_life_stage, format_spending_pattern

__all__ = ['NamingService', 'format_life_stage', 'format_spending_pattern']
