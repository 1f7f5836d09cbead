from fastapi import APIRouter, Depends, Response, status

from notary.api.deps import get_runtime
from notary.schemas.entries import CapabilitiesOut

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", response_model=CapabilitiesOut)
async def readyz(response: Response, runtime=Depends(get_runtime)) -> CapabilitiesOut:
    connection = runtime.connection
    if runtime.enabled and connection is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return CapabilitiesOut(
        ledger_enabled=runtime.enabled,
        connected=connection is not None,
        endpoint=connection.endpoint if connection is not None else None,
        capabilities=connection.capabilities.as_dict() if connection is not None else {},
    )
