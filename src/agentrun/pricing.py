from __future__ import annotations

COST_PER_1K_TOKENS: dict[str, tuple[float, float]] = {
    "gpt-3.5-turbo": (0.0005, 0.0015),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-4o": (0.0025, 0.01),
    "gpt-4o-mini": (0.00015, 0.0006),
    "claude-3-5-sonnet-20241022": (0.003, 0.015),
    "gemini-1.5-pro": (0.00125, 0.005),
}

PROVIDER_DEFAULT_MODEL = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-sonnet-20241022",
    "google": "gemini-1.5-pro",
}


def estimate_cost(provider: str, model_name: str, tokens_in: int, tokens_out: int) -> float:
    """Advisory USD cost for one call; unknown models use the provider's default rate."""
    rates = COST_PER_1K_TOKENS.get(model_name)
    if rates is None:
        fallback_model = PROVIDER_DEFAULT_MODEL.get(provider, PROVIDER_DEFAULT_MODEL["google"])
        rates = COST_PER_1K_TOKENS[fallback_model]
    input_rate, output_rate = rates
    return (tokens_in / 1000) * input_rate + (tokens_out / 1000) * output_rate
