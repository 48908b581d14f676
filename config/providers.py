# FILE: config/providers.py
"""Provider profiles - Single source of truth for generation backends.

Every provider the workspace can route to must be listed here before use.
The orchestrator reads history budgets and the fallback designation from
this table; nothing else hard-codes provider ids.

Tiers:
  - premium: metered per day, subject to the usage allowance
  - standard: paid, no daily allowance
  - free: low-cost default, the designated fallback target

Budgets are estimated tokens (see atelier.llm.token_budgeting), not exact
backend tokens.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Dict, List


@dataclass(frozen=True)
class ProviderProfile:
    """Static description of one generation backend."""
    provider_id: str
    label: str
    model: str
    history_budget: int
    system_prompt_tokens: int = 1500
    tier: str = "standard"
    supports_vision: bool = False
    daily_allowance: int = 0  # 0 = unmetered


# =============================================================================
# Provider Table (Authoritative Source)
# =============================================================================

PROVIDER_PROFILES: Dict[str, ProviderProfile] = {
    "grok": ProviderProfile(
        provider_id="grok",
        label="Kimi K2",
        model="moonshotai/kimi-k2-instruct-0905",
        history_budget=int(os.getenv("ATELIER_GROK_HISTORY_BUDGET", "16000")),
        tier="premium",
        daily_allowance=int(os.getenv("ATELIER_GROK_DAILY_ALLOWANCE", "200")),
    ),
    "openai": ProviderProfile(
        provider_id="openai",
        label="GPT-4o",
        model="openai/gpt-4o",
        history_budget=int(os.getenv("ATELIER_OPENAI_HISTORY_BUDGET", "24000")),
        supports_vision=True,
    ),
    "deepseek": ProviderProfile(
        provider_id="deepseek",
        label="DeepSeek V3",
        model="deepseek-chat",
        history_budget=int(os.getenv("ATELIER_DEEPSEEK_HISTORY_BUDGET", "12000")),
    ),
    "groq": ProviderProfile(
        provider_id="groq",
        label="Llama 3",
        model="llama-3.3-70b-versatile",
        history_budget=int(os.getenv("ATELIER_GROQ_HISTORY_BUDGET", "6000")),
        system_prompt_tokens=1200,
        tier="free",
    ),
}

# Provider used when the caller names none
DEFAULT_PROVIDER = os.getenv("ATELIER_DEFAULT_PROVIDER", "grok")

# The single low-cost provider every escalation falls back to
FALLBACK_PROVIDER = os.getenv("ATELIER_FALLBACK_PROVIDER", "groq")

# Provider used when images are attached and the selected one is text-only
VISION_PROVIDER = os.getenv("ATELIER_VISION_PROVIDER", "openai")

# Fraction of the original history budget used for the truncated retry
RETRY_BUDGET_RATIO = float(os.getenv("ATELIER_RETRY_BUDGET_RATIO", "0.25"))


def get_provider_profile(provider_id: str) -> ProviderProfile:
    """Return the profile for a provider.

    Unknown ids resolve to the fallback provider's profile so a typo in a
    client request never crashes routing.
    """
    profile = PROVIDER_PROFILES.get(provider_id)
    if profile is not None:
        return profile
    return PROVIDER_PROFILES[FALLBACK_PROVIDER]


def is_known_provider(provider_id: str) -> bool:
    return provider_id in PROVIDER_PROFILES


def get_history_budget(provider_id: str) -> int:
    """Total history budget (estimated tokens) for a provider."""
    return get_provider_profile(provider_id).history_budget


def get_retry_budget(provider_id: str) -> int:
    """Tighter budget used when a provider rejected the prompt as too large."""
    return max(0, int(get_history_budget(provider_id) * RETRY_BUDGET_RATIO))


def list_providers() -> List[str]:
    return list(PROVIDER_PROFILES.keys())
