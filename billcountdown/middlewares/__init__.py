from .request_id_middleware import *
from .cron_auth import verify_cron_secret

__all__ = [
    "RequestIDMiddleware",
    "verify_cron_secret",
]
