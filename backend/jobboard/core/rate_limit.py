from slowapi import Limiter
from slowapi.util import get_remote_address

from jobboard.core.config import settings

# Public interview links are unauthenticated; key by client address.
limiter = Limiter(key_func=get_remote_address, enabled=settings.ENABLE_RATE_LIMITING)
