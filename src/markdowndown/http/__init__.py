"""HTTP transport."""

from .client import AsyncHttpClient
from .protocols import HttpResponse, Transport
from .rate_limiter import PerHostRateLimiter

__all__ = ["AsyncHttpClient", "HttpResponse", "PerHostRateLimiter", "Transport"]
