from __future__ import annotations

from datetime import datetime, timezone

import pytest
from substrateinterface import Keypair

from fakes import FakeChain, FakeRepository
from notary.core.custody import KeyCustodian
from notary.ledger.connection import LedgerConnection
from notary.ledger.keys import generate_account
from notary.services.repository import ChainAccountRecord, JobPostingRecord

SS58_FORMAT = 29


@pytest.fixture
def custodian() -> KeyCustodian:
    return KeyCustodian.from_secret("0123456789abcdef" * 4)


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def connection(chain: FakeChain) -> LedgerConnection:
    return LedgerConnection(chain, chain._capabilities[0], "ws://ledger.test")


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def treasury_mnemonic() -> str:
    return Keypair.generate_mnemonic()


@pytest.fixture
def organization_account(custodian: KeyCustodian, repository: FakeRepository) -> ChainAccountRecord:
    account = generate_account(ss58_format=SS58_FORMAT)
    record = ChainAccountRecord(
        owner_kind="organization",
        owner_id="org-1",
        address=account.address,
        public_key=account.public_key,
        mnemonic_enc=custodian.encrypt(account.mnemonic),
        profile_id="profile-1",
        registry_id="registry-1",
    )
    repository.accounts[("organization", "org-1")] = record
    return record


@pytest.fixture
def make_posting(repository: FakeRepository):
    def _make(status: str = "open", posting_id: str = "posting-1") -> JobPostingRecord:
        posting = JobPostingRecord(
            id=posting_id,
            title="Research Software Engineer",
            status=status,
            organization_id="org-1",
            organization_name="Example Lab",
            description="Build data pipelines.",
            metadata={"seniority": "mid"},
            location={"city": "Berlin"},
            contact={"email": "jobs@example.org"},
            created_at=datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc),
            updated_at=datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc),
        )
        repository.postings[posting_id] = posting
        return posting

    return _make
