"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, response helper) lives here; every sub-router
imports what it needs from this package.
"""

import os
from typing import Any, Dict

from fastapi import APIRouter
from slowapi import Limiter

from cancha.services.security_service import get_client_identifier

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
# Process-local counters unless a shared store is configured; with several
# app instances and memory storage every instance enforces its own limits.
if os.getenv("RATE_LIMIT_STORAGE_URI"):
    RATE_LIMIT_STORAGE_URI = os.getenv("RATE_LIMIT_STORAGE_URI")
elif os.getenv("REDIS_HOST"):
    RATE_LIMIT_STORAGE_URI = f"redis://{os.getenv('REDIS_HOST')}:{os.getenv('REDIS_PORT', '6379')}/0"
else:
    RATE_LIMIT_STORAGE_URI = "memory://"

limiter = Limiter(key_func=get_client_identifier, storage_uri=RATE_LIMIT_STORAGE_URI)


# ---------------------------------------------------------------------------
# Shared response envelope
# ---------------------------------------------------------------------------
def api_response(message: str, **data: Any) -> Dict[str, Any]:
    """Success envelope: {"success": true, "message": ..., "data": {...}}."""
    return {"success": True, "message": message, "data": data}


# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from cancha.api.routes.auth import router as auth_router  # noqa: E402
from cancha.api.routes.games import router as games_router  # noqa: E402
from cancha.api.routes.registrations import router as registrations_router  # noqa: E402
from cancha.api.routes.notifications import router as notifications_router  # noqa: E402
from cancha.api.routes.admin import router as admin_router  # noqa: E402

router = APIRouter()
router.include_router(auth_router)
router.include_router(games_router)
router.include_router(registrations_router)
router.include_router(notifications_router)
router.include_router(admin_router)
