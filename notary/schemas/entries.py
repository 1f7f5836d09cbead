from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class EntryLinkOut(BaseModel):
    job_posting_id: str
    entry_id: str
    registry_id: str
    tx_hash: str | None = None
    revoked: bool = False
    state: Literal["active", "revoked"]
    created_at: datetime
    updated_at: datetime


class CapabilitiesOut(BaseModel):
    ledger_enabled: bool
    connected: bool
    endpoint: str | None = None
    capabilities: dict[str, bool] = {}
