from fastapi import APIRouter, Depends, HTTPException, status as http_status

from notary.api.deps import get_runtime, require_provisioner
from notary.schemas.accounts import AcceptedOut, ChainAccountOut, OrganizationAccountRequest
from notary.services.repository import ChainAccountRecord, OwnerKind, RepositoryUnavailableError

router = APIRouter()


@router.post(
    "/organizations/{org_id}/chain-account",
    response_model=AcceptedOut,
    status_code=http_status.HTTP_202_ACCEPTED,
)
async def provision_organization_account(
    org_id: str,
    payload: OrganizationAccountRequest | None = None,
    runtime=Depends(get_runtime),
) -> AcceptedOut:
    provisioner = require_provisioner(runtime)
    slug = (payload.slug if payload is not None else None) or org_id[:8]
    description = f"provision organization {org_id}"
    runtime.dispatcher.spawn(provisioner.create_account_for_organization(org_id, slug), description=description)
    return AcceptedOut(task=description)


@router.post(
    "/users/{user_id}/chain-account",
    response_model=AcceptedOut,
    status_code=http_status.HTTP_202_ACCEPTED,
)
async def provision_user_account(user_id: str, runtime=Depends(get_runtime)) -> AcceptedOut:
    provisioner = require_provisioner(runtime)
    description = f"provision user {user_id}"
    runtime.dispatcher.spawn(provisioner.create_account_for_user(user_id), description=description)
    return AcceptedOut(task=description)


@router.get("/organizations/{org_id}/chain-account", response_model=ChainAccountOut)
async def get_organization_account(org_id: str, runtime=Depends(get_runtime)) -> ChainAccountOut:
    return await _get_account(runtime, "organization", org_id)


@router.get("/users/{user_id}/chain-account", response_model=ChainAccountOut)
async def get_user_account(user_id: str, runtime=Depends(get_runtime)) -> ChainAccountOut:
    return await _get_account(runtime, "user", user_id)


async def _get_account(runtime, owner_kind: OwnerKind, owner_id: str) -> ChainAccountOut:
    try:
        record = await runtime.repository.get_chain_account(owner_kind, owner_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail=f"no chain account for {owner_kind}")
    return _account_out(record)


def _account_out(record: ChainAccountRecord) -> ChainAccountOut:
    return ChainAccountOut(
        owner_kind=record.owner_kind,
        owner_id=record.owner_id,
        address=record.address,
        public_key=record.public_key,
        profile_id=record.profile_id,
        registry_id=record.registry_id,
        did=record.did,
        did_anchored=record.did_anchored,
        created_at=record.created_at,
    )
