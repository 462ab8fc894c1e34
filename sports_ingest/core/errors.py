"""
Ingestion error taxonomy.

Each class tells the caller what to do next:

- BudgetExhausted: provider quota hit. Defer until the next window, never retry now.
- ProviderUnavailable: circuit open or HTTP failure after retries. Skip the source this cycle.
- TransformError: malformed provider payload. Skip the record, keep the batch.
- PersistenceError: store write failure. Retried per row once, then counted.
- DispatchError: bus publish/handle failure. Retried per bus policy, then dead-lettered or logged.
"""
from typing import Optional


class IngestionError(Exception):
    """Base class for every error raised by the ingestion core."""


class BudgetExhausted(IngestionError):
    """The provider's daily or per-minute request budget is used up."""

    def __init__(self, provider: str, limit: int, window: str = "day"):
        self.provider = provider
        self.limit = limit
        self.window = window
        super().__init__(f"{provider} request budget exhausted ({limit}/{window})")


class ProviderUnavailable(IngestionError):
    """The provider could not be reached (circuit open or failed after retries)."""

    def __init__(self, provider: str, reason: str, status_code: Optional[int] = None):
        self.provider = provider
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{provider} unavailable: {reason}")


class TransformError(IngestionError):
    """A raw provider record could not be mapped into the canonical shape."""

    def __init__(self, provider: str, sport: str, record_id: Optional[str], detail: str):
        self.provider = provider
        self.sport = sport
        self.record_id = record_id
        self.detail = detail
        super().__init__(f"Cannot transform {provider}/{sport} record {record_id}: {detail}")


class PersistenceError(IngestionError):
    """A relational store operation failed."""

    def __init__(self, table: str, detail: str):
        self.table = table
        self.detail = detail
        super().__init__(f"Store operation on '{table}' failed: {detail}")


class DispatchError(IngestionError):
    """A domain event could not be published or handled."""

    def __init__(self, event_key: str, detail: str):
        self.event_key = event_key
        self.detail = detail
        super().__init__(f"Dispatch of '{event_key}' failed: {detail}")
