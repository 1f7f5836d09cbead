from fastapi import HTTPException, Request, status

from notary.services.provisioner import AccountProvisioner
from notary.services.runtime import NotaryRuntime


def get_runtime(request: Request) -> NotaryRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="notary runtime not started")
    return runtime


def require_provisioner(runtime: NotaryRuntime) -> AccountProvisioner:
    if runtime.provisioner is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="ledger notarization is disabled",
        )
    return runtime.provisioner
