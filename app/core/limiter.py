from slowapi import Limiter
from slowapi.util import get_remote_address
from app.core.config import settings

# Rate Limiter Configuration
# Clients are identified by remote address; chat and upload routes get
# their own tighter limits from settings.RATE_LIMIT_ENDPOINTS

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=list(settings.RATE_LIMIT_DEFAULT)
)


def endpoint_limit(name: str) -> str:
    """Join the configured limits of one endpoint into slowapi's ';' syntax."""
    return ";".join(settings.RATE_LIMIT_ENDPOINTS.get(name, settings.RATE_LIMIT_DEFAULT))
