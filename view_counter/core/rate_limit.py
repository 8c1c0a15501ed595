"""
Rate Limiting Configuration

This module provides rate limiting functionality for API endpoints.
Rate limiting keeps a single client from flooding the buffer or from
triggering expensive backing store scans.

Design Decisions:
- Uses slowapi for rate limiting (lightweight, FastAPI-compatible)
- Different limits for different endpoints
- IP-based limiting
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Initialize rate limiter
# Uses IP address for rate limiting
limiter = Limiter(key_func=get_remote_address)

# Rate limit configurations per endpoint
# Format: "count/period" (e.g., "10/minute" means 10 requests per minute)
RATE_LIMITS = {
    "increment": "300/minute",  # Increments only touch memory
    "views": "60/minute",  # Single count reads scan the backing store
    "all_views": "10/minute",  # Full listing, one complete scan per call
    "flush": "6/minute",  # Manual flush triggers
}
