"""Translation provider clients and span batching.

This package defines the Translation Client contract, HTTP provider clients,
request pacing, and the batcher that drives them.
"""

from .batcher import BatchOutcome, RetryPolicy, TranslationBatcher, plan_batches
from .client import GoogleTranslateClient, OpenAITranslateClient, TranslationClient
from .rate_limiter import RateLimiter

__all__ = [
    "BatchOutcome",
    "GoogleTranslateClient",
    "OpenAITranslateClient",
    "RateLimiter",
    "RetryPolicy",
    "TranslationBatcher",
    "TranslationClient",
    "plan_batches",
]
