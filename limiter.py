from slowapi import Limiter
from slowapi.util import get_remote_address

from config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.GENERAL_RATE_LIMIT],
    enabled=settings.RATE_LIMIT_ENABLED,
    strategy="fixed-window",
)
