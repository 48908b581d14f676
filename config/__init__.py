# FILE: config/__init__.py
"""Configuration package for the Atelier workspace.

Contains:
- providers.py: Provider profiles, budgets and fallback designation
"""

from config.providers import (
    PROVIDER_PROFILES,
    DEFAULT_PROVIDER,
    FALLBACK_PROVIDER,
    VISION_PROVIDER,
    RETRY_BUDGET_RATIO,
    ProviderProfile,
    get_provider_profile,
    get_history_budget,
    get_retry_budget,
    is_known_provider,
    list_providers,
)

__all__ = [
    "PROVIDER_PROFILES",
    "DEFAULT_PROVIDER",
    "FALLBACK_PROVIDER",
    "VISION_PROVIDER",
    "RETRY_BUDGET_RATIO",
    "ProviderProfile",
    "get_provider_profile",
    "get_history_budget",
    "get_retry_budget",
    "is_known_provider",
    "list_providers",
]
