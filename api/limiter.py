"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount as middleware) and api/routes/local.py (to
apply the per-IP password login limit with @limiter.limit()).

Using a single shared instance ensures all routes share the same counter
store. If this were instantiated in each module separately, each module would
get its own isolated counter and rate limits would never trigger.

The magic-link limits do not go through slowapi: the email-keyed variant
needs the request body. They use auth/ratelimit.py over the same `limits`
storage URI.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri=get_settings().rate_limit_storage_uri)
