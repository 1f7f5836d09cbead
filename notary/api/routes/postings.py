from fastapi import APIRouter, Depends, HTTPException, status as http_status

from notary.api.deps import get_runtime
from notary.schemas.accounts import AcceptedOut
from notary.schemas.entries import EntryLinkOut
from notary.services.entry_sync import entry_state
from notary.services.repository import RepositoryUnavailableError

router = APIRouter()


@router.post("/{posting_id}/sync", response_model=AcceptedOut, status_code=http_status.HTTP_202_ACCEPTED)
async def sync_posting(posting_id: str, runtime=Depends(get_runtime)) -> AcceptedOut:
    description = f"sync job posting {posting_id}"
    runtime.dispatcher.spawn(runtime.synchronizer.sync(posting_id), description=description)
    return AcceptedOut(task=description)


@router.get("/{posting_id}/entry", response_model=EntryLinkOut)
async def get_posting_entry(posting_id: str, runtime=Depends(get_runtime)) -> EntryLinkOut:
    try:
        link = await runtime.repository.get_entry_link(posting_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=http_status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    if link is None:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="job posting has no ledger entry")
    return EntryLinkOut(
        job_posting_id=link.job_posting_id,
        entry_id=link.entry_id,
        registry_id=link.registry_id,
        tx_hash=link.tx_hash,
        revoked=link.revoked,
        state=entry_state(link).value,
        created_at=link.created_at,
        updated_at=link.updated_at,
    )
