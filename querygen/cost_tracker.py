"""
Cost tracking for AI calls.

Tracks token usage and estimates costs for the query enhancement model, and
holds the flat per-request estimates the AI optimizer uses for telemetry.
"""

from dataclasses import dataclass, asdict

from config.settings import settings

# =============================================================================
# PRICING
# =============================================================================

# Flat estimates per AI request type (USD), used when no token usage is known
REQUEST_TYPE_COSTS = {
    "search": 0.05,
    "extraction": 0.03,
    "query-generation": 0.02,
}
DEFAULT_REQUEST_COST = 0.01


def estimate_request_cost(request_type: str) -> float:
    """Flat cost estimate for one request of the given type."""
    return REQUEST_TYPE_COSTS.get(request_type, DEFAULT_REQUEST_COST)


@dataclass
class UsageStats:
    """Accumulated usage statistics."""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    requests: int = 0
    failures: int = 0
    estimated_cost: float = 0.0

    def add_openai_usage(self, usage: dict, model: str) -> float:
        """Add usage from an OpenAI response. Returns the cost of this call."""
        input_tok = usage.get("prompt_tokens", 0) or usage.get("input_tokens", 0)
        output_tok = usage.get("completion_tokens", 0) or usage.get("output_tokens", 0)
        total_tok = usage.get("total_tokens", 0) or (input_tok + output_tok)

        self.input_tokens += input_tok
        self.output_tokens += output_tok
        self.total_tokens += total_tok
        self.requests += 1

        # Per 1M tokens
        pricing = settings.get_model_config(model)["pricing"]
        cost = (input_tok * pricing["input"] + output_tok * pricing["output"]) / 1_000_000
        self.estimated_cost += cost

        return cost

    def add_failure(self):
        self.requests += 1
        self.failures += 1

    def format_cost(self, cost: float) -> str:
        """Format cost for display."""
        if cost < 0.01:
            return f"${cost:.4f}"
        return f"${cost:.3f}"

    def summary(self) -> str:
        """Return a summary string."""
        return (
            f"Requests: {self.requests} | "
            f"Tokens: {self.total_tokens:,} ({self.input_tokens:,} in, {self.output_tokens:,} out) | "
            f"Cost: {self.format_cost(self.estimated_cost)}"
        )

    def to_dict(self) -> dict:
        return asdict(self)
