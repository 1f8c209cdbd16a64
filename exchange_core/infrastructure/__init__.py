"""
Infrastructure Layer
Request throttle (token bucket)
"""

from .rate_limiter import (
    TokenBucketConfig,
    AsyncTokenBucket,
)

__all__ = [
    "TokenBucketConfig",
    "AsyncTokenBucket",
]
