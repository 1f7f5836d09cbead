from fastapi import APIRouter, Depends

from notary.api.routes import accounts, health, postings
from notary.core.security import require_machine_key

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(accounts.router, tags=["accounts"], dependencies=[Depends(require_machine_key)])
api_router.include_router(
    postings.router,
    prefix="/postings",
    tags=["entries"],
    dependencies=[Depends(require_machine_key)],
)
