from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import settings

# Create a global limiter instance that can be imported by other modules.
# Clients are identified by IP address.
limiter = Limiter(key_func=get_remote_address)

# Applied to the endpoints that drive the browser or the LLM
PARSE_RATE_LIMIT = settings.api_rate_limit
