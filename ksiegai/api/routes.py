from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response

from ksiegai.business.cash.api import router as cash_router
from ksiegai.business.customers.api import router as customers_router
from ksiegai.business.invoicing.api import router as invoices_router
from ksiegai.business.posting.api import router as posting_router
from ksiegai.business.products.api import router as products_router
from ksiegai.business.profiles.api import router as profiles_router
from ksiegai.business.reporting.finance.api import router as reports_router
from ksiegai.business.tax.api import router as tax_router
from ksiegai.core.auth import AuthUser, get_current_user
from ksiegai.core.config import get_settings
from ksiegai.core.rbac import has_permission
from ksiegai.integrations.ksef.api import router as ksef_router
from ksiegai.metrics import generate_metrics_payload, metrics_content_type
from ksiegai.platform.ledger.api import router as ledger_router
from ksiegai.platform.periods.api import router as periods_router

router = APIRouter()
router.include_router(profiles_router)
router.include_router(customers_router)
router.include_router(products_router)
router.include_router(invoices_router)
router.include_router(ledger_router)
router.include_router(periods_router)
router.include_router(posting_router)
router.include_router(cash_router)
router.include_router(tax_router)
router.include_router(reports_router)
router.include_router(ksef_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
async def me(user: AuthUser = Depends(get_current_user)) -> dict[str, str | list[str]]:
    return {
        "sub": user.sub,
        "roles": user.roles,
        "business_profiles": user.business_profile_ids,
    }


@router.get("/metrics", tags=["system"])
def metrics(user: AuthUser = Depends(get_current_user)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    if not has_permission(user.roles, "system.metrics.read"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Missing permission: system.metrics.read")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
