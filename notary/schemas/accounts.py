from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class OrganizationAccountRequest(BaseModel):
    slug: str | None = Field(default=None, min_length=1, max_length=128)


class ChainAccountOut(BaseModel):
    owner_kind: Literal["organization", "user"]
    owner_id: str
    address: str
    public_key: str
    profile_id: str | None = None
    registry_id: str | None = None
    did: str | None = None
    did_anchored: bool = False
    created_at: datetime


class AcceptedOut(BaseModel):
    status: Literal["accepted"] = "accepted"
    task: str
