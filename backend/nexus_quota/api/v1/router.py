"""API v1 router aggregator.

All v1 endpoint routers are included here and mounted at /api/v1.
"""

from fastapi import APIRouter

from nexus_quota.api.v1 import admin, billing, credits, quota

router = APIRouter()

# =============================================================================
# User-facing routers
# =============================================================================

router.include_router(quota.router, prefix="/quota", tags=["quota"])
router.include_router(credits.router, prefix="/credits", tags=["credits"])

# =============================================================================
# Integrations
# =============================================================================

router.include_router(billing.router, prefix="/billing", tags=["billing"])

# =============================================================================
# Admin
# =============================================================================

router.include_router(admin.router, prefix="/admin", tags=["admin"])
