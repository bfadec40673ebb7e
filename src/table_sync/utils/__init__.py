"""Shared utilities for configuration, logging, retries and cancellation"""

from table_sync.utils.cancellation import CancellationToken
from table_sync.utils.retry import RetryOutcome, RetryPolicy

__all__ = ["CancellationToken", "RetryOutcome", "RetryPolicy"]
