"""Flask extensions shared by the blueprints, bound in :func:`create_app`.

The advisor endpoints carry their own tighter limits because every call
costs model tokens; everything else falls under the default.
"""

from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

ADVISOR_LIMIT = "10/minute"

limiter = Limiter(
    get_remote_address,
    default_limits=["300/minute"],
    storage_uri="memory://",
    headers_enabled=True,
)
