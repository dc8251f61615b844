"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to attach to app.state) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. The limiter itself stays enabled for the life of the process;
each app decides for itself through app.state.rate_limit_enabled, which
create_app() copies from Settings. Building a second app (as the test suite
does) never changes the limits of the first.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

# Credential endpoints: brute-force and enumeration mitigation.
AUTH_RATE_LIMIT = "10/minute"

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def rate_limit_exempt(request: Request) -> bool:
    """Return True when the serving app has rate limiting switched off.

    Pass as exempt_when= to @limiter.limit(); slowapi hands it the request.
    """
    return not getattr(request.app.state, "rate_limit_enabled", True)
