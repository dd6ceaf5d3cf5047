"""Staff-facing routes."""

from fastapi import APIRouter

from staybook.api.routes import corporate, folios, me, night_audit, payments, taxes

router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok"}


router.include_router(me.router)
router.include_router(folios.router)
router.include_router(payments.router)
router.include_router(corporate.router)
router.include_router(taxes.router)
router.include_router(night_audit.router)
