from .http import Fetch, FetchResponse, HttpxFetch
from .retry import BatchOutcome, BatchState, RetryController
from .sender import BatchSender, PreparedBatch

__all__ = [
    "Fetch",
    "FetchResponse",
    "HttpxFetch",
    "BatchOutcome",
    "BatchState",
    "RetryController",
    "BatchSender",
    "PreparedBatch",
]
