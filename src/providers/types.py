"""Data types and error taxonomy shared by all usage providers."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# Provider JSON is camelCase (ccusage); everything we export is snake_case.
_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ModelBreakdown(BaseModel):
    """Per-model token/cost breakdown for one day."""

    model_config = _CAMEL

    model_name: str
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    cost: float = 0.0


class DailyUsage(BaseModel):
    """One day of usage as reported by a provider."""

    model_config = _CAMEL

    date: str  # YYYY-MM-DD
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    models_used: list[str] = []
    model_breakdowns: list[ModelBreakdown] = []


class ProviderError(Exception):
    """Base class for failures fetching usage from a provider."""

    prefix = "Provider error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"{self.prefix}: {message}")


class BinaryNotFoundError(ProviderError):
    """The provider executable could not be located."""

    prefix = "Binary not found"


class ExecutionFailedError(ProviderError):
    """The provider process failed to launch, timed out or exited non-zero."""

    prefix = "Execution failed"


class ProviderParseError(ProviderError):
    """The provider returned output we could not understand."""

    prefix = "Parse error"
