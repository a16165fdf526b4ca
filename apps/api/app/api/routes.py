from fastapi import APIRouter, Depends
from fastapi.responses import Response

from app.core.auth import AuthUser
from app.core.config import get_settings
from app.core.errors import NotFoundError
from app.core.rbac import require_roles
from app.crm.api import bulk_router, filters_router, leads_router, sources_router, statuses_router
from app.identity.api import auth_router, lookups_router, teams_router, users_router
from app.identity.models import ROLE_ADMIN
from app.metrics import generate_metrics_payload, metrics_content_type
from app.platform.ledger.api import router as ledger_router
from app.reporting.dashboard.api import router as dashboard_router

router = APIRouter()
router.include_router(auth_router)
router.include_router(users_router)
router.include_router(teams_router)
router.include_router(lookups_router)
# /api/leads/bulk/* must match before /api/leads/{lead_id}/*.
router.include_router(bulk_router)
router.include_router(leads_router)
router.include_router(ledger_router)
router.include_router(statuses_router)
router.include_router(sources_router)
router.include_router(filters_router)
router.include_router(dashboard_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/metrics", tags=["system"])
def metrics(_user: AuthUser = Depends(require_roles(ROLE_ADMIN))) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise NotFoundError("not found")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
