"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Keying: authenticated callers are counted per user id, anonymous callers per
client address, so users behind one NAT do not exhaust each other's budget.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from auth.dependencies import try_get_principal
from core.config import get_settings

_settings = get_settings()


def rate_limit_key(request: Request) -> str:
    principal = try_get_principal(request)
    if principal is not None:
        return f"user:{principal.id}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[_settings.rate_limit],
    storage_uri="memory://",
    enabled=_settings.rate_limit_enabled,
)
