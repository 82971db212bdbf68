"""Test doubles and request builders shared across the suite."""
from models.query import QueryCriteria, QueryGenerationOptions, QueryGenerationRequest
from querygen.optimizer import OptimizerConfig


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """
    Canned AI provider.

    responses maps operation name ("query_expansion", "query_refinement",
    "query_localization", "query_language_specific") to the queries returned.
    Operations listed in fail raise.
    """

    def __init__(self, responses: dict = None, fail=()):
        self.responses = responses or {}
        self.fail = set(fail)
        self.calls: list[tuple[str, str]] = []

    async def complete(self, prompt: str, operation: str) -> list[str]:
        self.calls.append((operation, prompt))
        if operation in self.fail:
            raise RuntimeError(f"{operation} unavailable")
        return list(self.responses.get(operation, []))

    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]


def no_retry_config(**overrides) -> OptimizerConfig:
    """Optimizer config for tests: no retry delay, no batching."""
    values = {"retry_enabled": False, "retry_delay": 0.0, "batching_enabled": False}
    values.update(overrides)
    return OptimizerConfig(**values)


def make_request(
    query: str = "tech journalists",
    search_id: str = "search-1",
    batch_id: str = "batch-1",
    **criteria_and_options,
) -> QueryGenerationRequest:
    """Request builder. Criteria keys (countries, ...) and option keys (max_queries, ...) are accepted."""
    criteria_keys = ("countries", "categories", "beats", "languages", "topics")
    criteria = {k: v for k, v in criteria_and_options.items() if k in criteria_keys}
    options = {k: v for k, v in criteria_and_options.items() if k not in criteria_keys}
    return QueryGenerationRequest(
        search_id=search_id,
        batch_id=batch_id,
        original_query=query,
        criteria=QueryCriteria(**criteria),
        options=QueryGenerationOptions(**options),
    )
